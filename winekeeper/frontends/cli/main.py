#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
WineKeeper CLI Frontend - Main Entry Point

Command-line interface over CompatibilityToolService.
"""

import sys
import argparse
import logging
from pathlib import Path

from tqdm import tqdm

from winekeeper import __version__ as winekeeper_version
from winekeeper.backend.errors import CompatibilityToolError
from winekeeper.backend.handlers.config_handler import ConfigHandler
from winekeeper.backend.services.compatibility_service import CompatibilityToolService
from winekeeper.shared.colors import COLOR_INFO, COLOR_ERROR, COLOR_SUCCESS, COLOR_RESET

logger = logging.getLogger(__name__)


class WineKeeperCLI:
    """Main application class for the WineKeeper CLI"""

    def __init__(self):
        self._configure_logging_early()
        self.config_handler = ConfigHandler()
        self.parser = self._build_parser()
        self.args = None

    def _configure_logging_early(self):
        """Keep logging quiet until arguments are parsed"""
        logging.getLogger().setLevel(logging.WARNING)

        if not logging.getLogger().handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            handler.setFormatter(formatter)
            logging.getLogger().addHandler(handler)

    def _configure_logging_final(self):
        """Configure final logging level based on parsed arguments"""
        from winekeeper.backend.handlers.logging_handler import LoggingHandler

        logging_handler = LoggingHandler()
        logging_handler.rotate_log_for_logger('winekeeper', 'winekeeper-cli.log')
        app_logger = logging_handler.setup_logger('winekeeper', 'winekeeper-cli.log')

        if self.args.debug:
            app_logger.setLevel(logging.DEBUG)
            print("Debug logging enabled for console and file")
        elif self.args.verbose:
            app_logger.setLevel(logging.INFO)
        else:
            app_logger.setLevel(logging.WARNING)

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(prog="winekeeper", description="Manage the Wine runtime and prefix")
        parser.add_argument('--version', action='version', version=f"%(prog)s {winekeeper_version}")
        parser.add_argument('--debug', action='store_true', help='Enable debug logging')
        parser.add_argument('--verbose', '-v', action='store_true', help='Enable informational logging')

        subparsers = parser.add_subparsers(dest='command', required=True)
        subparsers.add_parser('ensure-tool', help='Download and set up Wine if missing')
        subparsers.add_parser('ensure-prefix', help='Initialize the Wine prefix')
        subparsers.add_parser('reset-prefix', help='Delete and recreate the Wine prefix')

        fixes = subparsers.add_parser('game-fixes', help='Write the default game configuration')
        fixes.add_argument('config_dir', nargs='?', help='Game configuration directory')

        run = subparsers.add_parser('run', help='Run wine64 with the given arguments in the prefix')
        run.add_argument('--cwd', help='Working directory')
        run.add_argument('wine_args', nargs=argparse.REMAINDER, help='Arguments for wine64')

        pids = subparsers.add_parser('pids', help='List Wine process ids of an executable')
        pids.add_argument('executable')

        winepath = subparsers.add_parser('winepath', help='Translate a Unix path to a Windows path')
        winepath.add_argument('path')

        reg = subparsers.add_parser('reg-add', help='Add a registry value in the prefix')
        reg.add_argument('key')
        reg.add_argument('value')
        reg.add_argument('data')

        subparsers.add_parser('kill', help='Kill every process in the prefix')
        return parser

    def _create_service(self) -> CompatibilityToolService:
        return CompatibilityToolService(
            self.config_handler.get_wine_settings(),
            self.config_handler.get_hud_type(),
            self.config_handler.get_tools_dir(),
        )

    def run(self, argv=None) -> int:
        self.args = self.parser.parse_args(argv)
        self._configure_logging_final()

        try:
            with self._create_service() as service:
                return self._dispatch(service)
        except CompatibilityToolError as e:
            logger.error(f"{self.args.command} failed: {e}")
            print(f"{COLOR_ERROR}Error: {e}{COLOR_RESET}")
            return 1
        except KeyboardInterrupt:
            print(f"\n{COLOR_INFO}Interrupted{COLOR_RESET}")
            return 130

    def _dispatch(self, service: CompatibilityToolService) -> int:
        command = self.args.command
        if command == 'ensure-tool':
            return self._handle_ensure_tool(service)
        elif command == 'ensure-prefix':
            return 0 if service.ensure_prefix() == 0 else 1
        elif command == 'reset-prefix':
            print(f"{COLOR_INFO}Resetting prefix {service.wine_settings.prefix}...{COLOR_RESET}")
            return 0 if service.reset_prefix() == 0 else 1
        elif command == 'game-fixes':
            config_dir = self.args.config_dir or self.config_handler.get_game_config_dir()
            if not config_dir:
                print(f"{COLOR_ERROR}No game config directory given or configured{COLOR_RESET}")
                return 1
            config_file = service.ensure_game_fixes(Path(config_dir))
            print(f"{COLOR_SUCCESS}Default configuration written to {config_file}{COLOR_RESET}")
            return 0
        elif command == 'run':
            wine_args = self.args.wine_args
            if wine_args and wine_args[0] == '--':
                wine_args = wine_args[1:]
            if not wine_args:
                print(f"{COLOR_ERROR}Nothing to run{COLOR_RESET}")
                return 1
            with service.run_in_prefix(wine_args, working_directory=self.args.cwd) as proc:
                return proc.wait()
        elif command == 'pids':
            for pid in service.get_process_ids(self.args.executable):
                print(pid)
            return 0
        elif command == 'winepath':
            print(service.unix_to_wine_path(self.args.path))
            return 0
        elif command == 'reg-add':
            return 0 if service.add_registry_key(self.args.key, self.args.value, self.args.data) == 0 else 1
        elif command == 'kill':
            service.kill()
            return 0
        else:
            print(f"Unknown command: {command}")
            return 1

    def _handle_ensure_tool(self, service: CompatibilityToolService) -> int:
        if service.wine64_path.is_file():
            service.ensure_tool()
            print(f"{COLOR_SUCCESS}Wine is already installed at {service.wine_bin_path}{COLOR_RESET}")
            return 0

        print(f"{COLOR_INFO}Downloading Wine...{COLOR_RESET}")
        with tqdm(unit='B', unit_scale=True, unit_divisor=1024, desc='wine') as bar:
            def on_progress(downloaded, total):
                if total and bar.total != total:
                    bar.total = total
                bar.update(downloaded - bar.n)

            service.download_progress_callback = on_progress
            service.ensure_tool()
        print(f"{COLOR_SUCCESS}Wine is ready at {service.wine_bin_path}{COLOR_RESET}")
        return 0


def main(argv=None):
    return WineKeeperCLI().run(argv)


if __name__ == "__main__":
    sys.exit(main())
