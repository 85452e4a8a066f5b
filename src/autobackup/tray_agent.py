from __future__ import annotations

import argparse
import os
from pathlib import Path
import threading
import traceback

from PIL import Image, ImageDraw
import pystray

from autobackup.config import load_config
from autobackup.mirror_engine import MirrorEngine
from autobackup.run_service import configure_logging


def default_log_file() -> Path:
    return Path.home() / ".autobackup" / "agent.log"


def _noop(icon: pystray.Icon, item: pystray.MenuItem) -> None:
    return None


class TrayAgent:
    def __init__(self, config_path: Path) -> None:
        self.config = load_config(config_path)
        self.config_path = config_path
        self.log_file = self.config.log_file or default_log_file()
        self.logger = configure_logging(self.log_file, self.config.log_level)

        self.engine = MirrorEngine(self.config)
        self._stop_event = threading.Event()
        self._status = "starting"
        self._service_thread = threading.Thread(target=self._service_loop, daemon=True)

        self.icon = pystray.Icon("autobackup-agent", self._create_icon(), "AutoBackup Agent", self._build_menu())

    def _create_icon(self) -> Image.Image:
        image = Image.new("RGBA", (64, 64), (28, 28, 30, 255))
        draw = ImageDraw.Draw(image)
        draw.rectangle((8, 8, 56, 56), outline=(120, 200, 140, 255), width=3)
        draw.rectangle((16, 20, 48, 44), fill=(120, 200, 140, 255))
        draw.rectangle((20, 24, 44, 40), fill=(28, 28, 30, 255))
        return image

    def _build_menu(self) -> pystray.Menu:
        return pystray.Menu(
            pystray.MenuItem(lambda _: f"Status: {self._status}", _noop, enabled=False),
            pystray.MenuItem(lambda _: f"Source: {self.config.source_root}", _noop, enabled=False),
            pystray.MenuItem(lambda _: f"Backup: {self.config.backup_root}", _noop, enabled=False),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Rescan now", self._menu_rescan),
            pystray.MenuItem("Open config", self._menu_open_config),
            pystray.MenuItem("Open log", self._menu_open_log),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Quit", self._menu_quit),
        )

    def run(self) -> None:
        self.logger.info("Agent starting: %s -> %s", self.config.source_root, self.config.backup_root)
        self._service_thread.start()
        self.icon.run()

    def stop(self) -> None:
        self.logger.info("Agent stopping")
        self._stop_event.set()
        self._service_thread.join(timeout=30)
        self.icon.stop()

    def _set_status(self, status: str) -> None:
        self._status = status
        self.icon.update_menu()

    def _notify(self, message: str) -> None:
        try:
            self.icon.notify(message, "AutoBackup")
        except Exception:
            self.logger.debug("Tray notification unavailable")

    def _service_loop(self) -> None:
        try:
            self._set_status("watching")
            self.engine.run(self._stop_event)
            self._set_status("stopped")
        except Exception:
            self.logger.error("Backup service failed:\n%s", traceback.format_exc())
            self._set_status("failed")
            self._notify("Backup service failed. See log for details.")

    def _menu_rescan(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        try:
            future = self.engine.rescan()
        except RuntimeError:
            self.logger.info("Rescan ignored, backup service is not running")
            return

        def _done(_future: object) -> None:
            if future.exception() is None:
                stats = future.result()
                self._notify(f"Rescan complete: copied={stats.copied}, failed={stats.failed}")

        future.add_done_callback(_done)

    def _menu_open_config(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        self._open_in_shell(self.config_path)

    def _menu_open_log(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        self._open_in_shell(self.log_file)

    def _menu_quit(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        self.stop()

    def _open_in_shell(self, path: Path) -> None:
        try:
            os.startfile(str(path))  # type: ignore[attr-defined]
        except Exception as exc:
            self.logger.error("Failed to open path %s: %s", path, exc)
            self._notify(f"Open failed: {path}")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="autobackup-agent", description="AutoBackup task tray agent")
    parser.add_argument("--config", type=Path, default=Path.cwd() / "autobackup.yaml")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    agent = TrayAgent(config_path=args.config)
    agent.run()
    return 0
