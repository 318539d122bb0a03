"""Command-line interface for open-data discovery."""

import argparse
import json
import logging
import sys
from pathlib import Path

import pandas as pd

from .config import Config
from .pipeline import DiscoveryPipeline, InvalidQuestionError
from .query_builder import build_search_url
from .utils import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID_QUESTION = 2
EXIT_INTERRUPTED = 130


def parse_args(argv=None):
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog='opendati_discovery',
        description='Find real open-data rows on dati.gov.it for a question in Italian.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ask a question, print the result as JSON
  python -m opendati_discovery ask "Confronta i reati a Milano negli ultimi 5 anni"

  # Save the filtered rows as CSV, without the remote extractor
  python -m opendati_discovery ask "incidenti stradali a Bologna nel 2022" \\
    --no-llm \\
    --output-csv rows.csv

  # Show how the question is normalized and which searches would run
  python -m opendati_discovery plan "popolazione residente a Torino dal 2018 al 2022"
"""
    )

    parser.add_argument('--config', type=Path, help='YAML configuration file')
    parser.add_argument('--catalog-url', help='CKAN action API base URL')
    parser.add_argument('--no-llm', action='store_true',
                        help='Use local heuristics only for question normalization')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    ask = subparsers.add_parser('ask', help='Run discovery and print the result')
    ask.add_argument('question', help='Question in natural language')
    ask.add_argument('--output-json', type=Path, help='Write the result JSON to this file')
    ask.add_argument('--output-csv', type=Path, help='Write the filtered rows to this CSV file')
    ask.add_argument('--workers', type=int,
                     help='Threads prefetching resource samples (default: 1)')
    ask.add_argument('--time-budget', type=float,
                     help='Seconds allowed for the whole invocation (default: 60)')
    ask.add_argument('--strict-years', action='store_true',
                     help="Read row years only from 'anno'/'year' columns")
    ask.add_argument('--whole-word-geo', action='store_true',
                     help="Match the place name as a whole word ('Roma' not in 'Romagna')")
    ask.add_argument('--topic-fallback', action='store_true',
                     help='Run the broad scan on topic terms when no place is named')
    ask.add_argument('--progress', action='store_true', help='Show a progress bar while sampling')

    plan = subparsers.add_parser('plan', help='Print the normalized question and search plan')
    plan.add_argument('question', help='Question in natural language')

    return parser.parse_args(argv)


def build_config(args) -> Config:
    """Load the base config (YAML or environment) and apply CLI overrides."""
    config = Config.from_yaml(args.config) if args.config else Config.from_env()

    if args.catalog_url:
        config.catalog_url = args.catalog_url.rstrip('/')
    if args.no_llm:
        config.use_llm = False

    if args.command == 'ask':
        if args.workers is not None:
            if args.workers < 1:
                raise ValueError(f"--workers must be at least 1, got {args.workers}")
            config.sampling_workers = args.workers
        if args.time_budget is not None:
            if args.time_budget <= 0:
                raise ValueError("--time-budget must be positive")
            config.time_budget_seconds = args.time_budget
        if args.strict_years:
            config.strict_year_columns = True
        if args.whole_word_geo:
            config.whole_word_geography = True
        if args.topic_fallback:
            config.topic_only_fallback = True
        if args.progress:
            config.show_progress = True

    return config


def run_plan(pipeline: DiscoveryPipeline, question: str) -> dict:
    normalized, variants = pipeline.plan(question)
    return {
        'normalized': normalized.to_dict(),
        'variants': [
            {
                'priority': v.priority,
                'label': v.label,
                'rationale': v.rationale,
                'url': build_search_url(pipeline.config.search_url, v.request),
            }
            for v in variants
        ],
    }


def main(argv=None) -> int:
    """Main CLI entrypoint."""
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = build_config(args)
        pipeline = DiscoveryPipeline(config)

        if args.command == 'plan':
            print(json.dumps(run_plan(pipeline, args.question), ensure_ascii=False, indent=2))
            return EXIT_OK

        result = pipeline.run(args.question)
        payload = result.to_dict()
        text = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
        print(text)

        if args.output_json:
            args.output_json.write_text(text, encoding='utf-8')
            logger.info(f"Result written to {args.output_json}")

        if args.output_csv:
            pd.DataFrame(result.rows).to_csv(args.output_csv, index=False, encoding='utf-8')
            logger.info(f"{len(result.rows)} rows written to {args.output_csv}")

        return EXIT_OK

    except InvalidQuestionError as e:
        print(f"Invalid question: {e}", file=sys.stderr)
        return EXIT_INVALID_QUESTION
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == '__main__':
    sys.exit(main())
