"""
SurvWrapper - Main entry point for command line usage
"""

import shutil
import argparse
import logging
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

from survwrapper import __version__  # noqa: E402

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EXAMPLE_CONFIGS = {
    'survival': 'survival_config.yaml',
    'spls': 'spls_config.yaml',
}


def create_example_config(kind: str, output_path: str):
    """Copy the bundled example configuration for ``kind`` to ``output_path``."""
    if kind not in EXAMPLE_CONFIGS:
        raise ValueError(f"Unknown configuration kind '{kind}'. Choose from {sorted(EXAMPLE_CONFIGS)}")

    source = Path(__file__).parent / EXAMPLE_CONFIGS[kind]
    shutil.copyfile(source, output_path)
    logger.info(f"Example {kind} configuration created at: {output_path}")


def show_info():
    print(f"SurvWrapper v{__version__}")
    print("=" * 40)
    print(f"Package location: {Path(__file__).parent}")
    print("\nAvailable modules:")
    try:
        from survwrapper.model import SurvivalModelWrapper, SPLSCoxWrapper  # noqa: F401
        print("✓ SurvivalModelWrapper, SPLSCoxWrapper available")
    except ImportError as e:
        print(f"✗ Wrappers not available: {e}")

    for module_name in ['lifelines', 'sklearn', 'sksurv', 'pandas', 'numpy', 'joblib']:
        try:
            module = __import__(module_name)
            print(f"✓ {module_name} v{module.__version__} available")
        except ImportError:
            print(f"✗ {module_name} not available")


def main(argv=None):
    """Main entry point for SurvWrapper CLI."""
    parser = argparse.ArgumentParser(
        description="SurvWrapper - survival analysis and sPLS-Cox workflows",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create an example configuration file
  python -m survwrapper create-config survival survival_config.yaml

  # Run the Kaplan-Meier / Cox / Weibull walkthrough on synthetic data
  python -m survwrapper survival survival_config.yaml --mock

  # Run the sPLS-Cox walkthrough with 4 workers
  python -m survwrapper spls spls_config.yaml --n-jobs 4

  # Show package information
  python -m survwrapper info
        """
    )

    parser.add_argument(
        '--version', action='version',
        version=f'SurvWrapper {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Create config command
    config_parser = subparsers.add_parser(
        'create-config',
        help='Create an example configuration file'
    )
    config_parser.add_argument(
        'kind', choices=sorted(EXAMPLE_CONFIGS),
        help='Which workflow the configuration is for'
    )
    config_parser.add_argument(
        'output_path',
        help='Path where to save the example configuration'
    )

    # Info command
    subparsers.add_parser(
        'info',
        help='Show package information and environment details'
    )

    # Workflow commands
    for name, help_text in [('survival', 'Run the Kaplan-Meier / Cox / Weibull workflow'),
                            ('spls', 'Run the sPLS-Cox workflow')]:
        run_parser = subparsers.add_parser(name, help=help_text)
        run_parser.add_argument('config', help='Path or URL of the YAML configuration')
        run_parser.add_argument('--mock', action='store_true', help='Use a synthetic cohort')
        run_parser.add_argument('--output-dir', default=None, help='Directory for figures, tables and model')
        if name == 'spls':
            run_parser.add_argument('--n-jobs', type=int, default=None, help='Workers for the eta grid')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == 'create-config':
        create_example_config(args.kind, args.output_path)
    elif args.command == 'info':
        show_info()
    elif args.command == 'survival':
        from survwrapper.model.pipeline import run_survival_pipeline
        results = run_survival_pipeline(args.config, output_dir=args.output_dir, use_mock=args.mock)
        print(f"Results written to {results['output_dir']}")
    elif args.command == 'spls':
        from survwrapper.model.pipeline import run_spls_pipeline
        results = run_spls_pipeline(args.config, output_dir=args.output_dir, use_mock=args.mock,
                                    n_jobs=args.n_jobs)
        print(f"Results written to {results['output_dir']}")
    return 0


if __name__ == "__main__":
    main()
