#!/usr/bin/env python3
"""
Vulnerability Intelligence Pipeline (VIP) - Main Entry Point
"""
import sys
import json
import argparse
import logging
from typing import Dict, Any, List, Optional

from tqdm import tqdm

from vip.core.analyzer import (
    AnalysisCoordinator, AnalysisRequest, FeedIngestRequest, MergeAnalysisRequest
)
from vip.core.cache_gate import CacheGate
from vip.core.collaborators import (
    Base64SecretDecryptor, LoggingEventSignaler, LoggingNotificationEvaluator
)
from vip.core.cwe_resolver import CweResolver
from vip.core.feed_parser import NvdFeedParser
from vip.core.merge_engine import MergeEngine
from vip.core.models import AnalysisLevel, Component
from vip.core.ossindex_client import OssIndexAnalyzer, OssIndexSettings
from vip.database import SqlVulnerabilityStore, create_db_engine, create_session_factory, init_db
from vip.monitoring.metrics import export_metrics
from vip.utils.config import Config, set_config
from vip.utils.error_handler import MalformedIdentifierError, get_logger
from vip.utils.error_recovery import RetryConfig
from vip.utils.validation import validate_component_data, validate_file_exists

logger = get_logger('cli')


class Pipeline:
    """Wires the store, analyzers and feed parser from configuration"""

    def __init__(self, config: Config, database_url: Optional[str] = None):
        self.config = config
        engine = create_db_engine(database_url or config.get('database.url'),
                                  config.get('database.echo', False))
        init_db(engine)
        self.store = SqlVulnerabilityStore(create_session_factory(engine=engine))

        catalog = config.get('files.cwe_catalog')
        self.cwe_resolver = CweResolver.from_file(catalog) if catalog else CweResolver()
        self.notifier = LoggingNotificationEvaluator()
        self.signaler = LoggingEventSignaler()

        settings = OssIndexSettings.from_config(config)
        self.cache_gate = CacheGate(self.store, self.notifier,
                                    config.get('cache.validity_period_ms', 43200000))
        merge_engine = MergeEngine(self.store, self.cache_gate, self.cwe_resolver, self.notifier,
                                   target_host=settings.base_url,
                                   alias_sync_enabled=settings.alias_sync_enabled)
        self.analyzer = OssIndexAnalyzer(
            settings, self.cache_gate, merge_engine,
            RetryConfig.from_dict(config.get('api.ossindex.retry')),
            decryptor=Base64SecretDecryptor(bool(config.get('api.ossindex.token_encoded', False))),
        )
        self.feed_parser = NvdFeedParser(self.store.synchronize_vulnerability, self.cwe_resolver, self.signaler)
        self.coordinator = AnalysisCoordinator([self.analyzer], self.feed_parser, self.store)


def load_components(path: str, store: SqlVulnerabilityStore) -> List[Component]:
    """Read components from a JSON array and register them in the store"""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get('components', [])

    components = []
    for entry in data:
        if not validate_component_data(entry):
            continue
        try:
            component = Component.from_dict(entry)
        except MalformedIdentifierError as e:
            logger.warning(f"Discarding component {entry.get('uuid')}: {e}")
            continue
        store.save_component(component)
        components.append(component)
    logger.info(f"Loaded {len(components)} component(s) from {path}")
    return components


def _print_summary(title: str, results: Dict[str, Any]):
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)
    print(json.dumps(results, indent=2, default=str))
    print("=" * 60)


def cmd_ingest(pipeline: Pipeline, args) -> int:
    results = {'status': 'success', 'files': [], 'entries': 0}
    with tqdm(args.files, desc="Ingesting feeds", unit="file") as progress:
        for path in progress:
            if not validate_file_exists(path):
                results['status'] = 'failed'
                continue
            progress.set_postfix_str(path)
            summary = pipeline.coordinator.handle(FeedIngestRequest([path]))
            results['files'].extend(summary['files'])
            results['entries'] += summary['entries']
            if summary['status'] == 'failed':
                results['status'] = 'failed'

    _print_summary("FEED INGESTION COMPLETED", results)
    return 0 if results['status'] == 'success' else 1


def cmd_analyze(pipeline: Pipeline, args) -> int:
    if not validate_file_exists(args.components):
        return 1
    components = load_components(args.components, pipeline.store)
    level = AnalysisLevel(args.level or pipeline.config.get('processing.analysis_level', 'periodic'))
    results = pipeline.coordinator.handle(AnalysisRequest(components, level))
    _print_summary("COMPONENT ANALYSIS COMPLETED", results)
    return 0 if results['status'] == 'success' else 1


def cmd_merge(pipeline: Pipeline, args) -> int:
    results = pipeline.coordinator.handle(MergeAnalysisRequest(args.source_project, args.target_project))
    _print_summary("ANALYSIS TRAIL MERGED", results)
    return 0


def cmd_metrics(pipeline: Pipeline, args) -> int:
    # Counters below cover this process only; the row counts are the persisted state
    _print_summary("STORED STATE", pipeline.store.count_rows())
    print(export_metrics())
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for Vulnerability Intelligence Pipeline"""
    parser = argparse.ArgumentParser(
        prog='vip',
        description='Vulnerability Intelligence Pipeline (VIP) - NVD feed ingestion and OSS Index analysis',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vip init-db                          # Create database tables
  vip ingest nvdcve-1.1-2023.json      # Ingest NVD JSON 1.1 feeds
  vip analyze components.json          # Analyze components against OSS Index
  vip merge SOURCE_UUID TARGET_UUID    # Copy analysis trail between projects
  vip validate-config                  # Check the configuration file
  vip metrics                          # Show stored state and metrics
        """
    )
    parser.add_argument('--config', '-c', default=None,
                        help='Configuration file (default: vip.json or $VIP_CONFIG)')
    parser.add_argument('--database-url', default=None,
                        help='SQLAlchemy database URL overriding database.url')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command')
    subparsers.add_parser('init-db', help='Create database tables')

    ingest = subparsers.add_parser('ingest', help='Ingest NVD JSON 1.1 feed files')
    ingest.add_argument('files', nargs='+', help='Feed files (*.json)')

    analyze = subparsers.add_parser('analyze', help='Analyze components against OSS Index')
    analyze.add_argument('components', help='JSON file with an array of components')
    analyze.add_argument('--level', default=None, choices=[level.value for level in AnalysisLevel],
                         help='Analysis level passed to notification checks '
                              '(default: processing.analysis_level)')

    merge = subparsers.add_parser('merge', help='Copy the analysis trail from one project to another')
    merge.add_argument('source_project', help='Source project UUID')
    merge.add_argument('target_project', help='Target project UUID')

    subparsers.add_parser('validate-config', help='Validate the configuration and exit')
    subparsers.add_parser('metrics', help='Show stored row counts and metrics, then exit')

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    config = Config(args.config)
    if args.verbose:
        config.set('logging.level', 'DEBUG')
    set_config(config)
    config.setup_logging()
    if args.verbose:
        logging.getLogger('vip').setLevel(logging.DEBUG)

    try:
        if args.command == 'validate-config':
            valid = config.validate()
            print(f"Configuration {config.config_file}: {'valid' if valid else 'invalid'}")
            return 0 if valid else 1

        pipeline = Pipeline(config, args.database_url)

        if args.command == 'metrics':
            return cmd_metrics(pipeline, args)

        if args.command == 'init-db':
            print("Database initialized")
            return 0
        if args.command == 'ingest':
            return cmd_ingest(pipeline, args)
        if args.command == 'analyze':
            return cmd_analyze(pipeline, args)
        if args.command == 'merge':
            return cmd_merge(pipeline, args)
        return 2

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 130
    except Exception as e:
        logger.critical(f"Vulnerability Intelligence Pipeline failed: {e}", exc_info=args.verbose)
        print(f"\nVulnerability Intelligence Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
