"""
Daemon management for grocy-sync

Starts, stops and monitors the background sync daemon with PID file
management and signal handling. The daemon triggers a sync cycle at the
configured interval.
"""

import logging
import logging.handlers
import os
import signal
import subprocess
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import psutil
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.blocking import BlockingScheduler

from .config import GrocySyncConfig

logger = logging.getLogger(__name__)

# Upper bound for one scheduled cycle before the job gives up waiting
CYCLE_TIMEOUT_SECONDS = 300
STOP_TIMEOUT_SECONDS = 10
STARTUP_CHECK_SECONDS = 1


def setup_file_logging(config: GrocySyncConfig, config_dir: Path) -> None:
    """Attach a rotating log file handler to the root logger"""
    config_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        config_dir / config.log_file,
        maxBytes=config.log_max_bytes,
        backupCount=config.log_backup_count,
    )
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(getattr(logging, config.logging_level.upper(), logging.INFO))


class DaemonManager:
    """Manages the sync daemon lifecycle"""

    def __init__(self, config: Optional[GrocySyncConfig], config_dir: Optional[Path],
                 pid_file: str = ".grocy-sync.pid"):
        """
        Args:
            config: Configuration (optional for stop/status operations)
            config_dir: Directory for PID file, log file and cache
            pid_file: PID file name
        """
        self.config = config
        self.config_dir = config_dir or Path.cwd()
        self.pid_file = self.config_dir / pid_file
        self.sync = None
        self.scheduler: Optional[BlockingScheduler] = None

    def _process(self) -> Optional[psutil.Process]:
        """The daemon process named by the PID file; a stale PID file is removed"""
        try:
            proc = psutil.Process(int(self.pid_file.read_text().strip()))
            if 'grocy' in ' '.join(proc.cmdline()):
                return proc
        except FileNotFoundError:
            return None
        except (ValueError, psutil.NoSuchProcess, psutil.AccessDenied):
            pass

        self.pid_file.unlink(missing_ok=True)
        return None

    def is_running(self) -> bool:
        return self._process() is not None

    def get_status(self) -> Dict[str, Any]:
        proc = self._process()
        if proc is None:
            return {'running': False, 'message': 'Daemon is not running'}

        try:
            with proc.oneshot():
                return {
                    'running': True,
                    'pid': proc.pid,
                    'started': datetime.fromtimestamp(proc.create_time(), tz=timezone.utc),
                    'memory_mb': round(proc.memory_info().rss / 1024 / 1024, 1),
                    'status': proc.status(),
                }
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            return {'running': False, 'error': f'Could not get status: {e}'}

    def start_daemon(self, foreground: bool = False) -> int:
        """
        Start the sync daemon

        Args:
            foreground: Run the sync loop in this process instead of a
                detached child

        Returns:
            Exit code (0 for success)
        """
        if self.is_running():
            print("❌ Daemon is already running")
            return 1

        if foreground:
            return self._run_daemon()
        return self._spawn()

    def _spawn(self) -> int:
        """Re-run this CLI in the foreground as a child in its own session"""
        command = [
            sys.executable, "-m", "grocy_sync.cli",
            "--config-dir", str(self.config_dir),
            "start", "--foreground",
        ]
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

        time.sleep(STARTUP_CHECK_SECONDS)
        if process.poll() is not None:
            print(f"❌ Daemon exited during startup (code {process.returncode})")
            return 1

        print(f"✅ Daemon started (PID {process.pid})")
        return 0

    def stop_daemon(self) -> int:
        """
        Stop the running daemon, killing it if SIGTERM is ignored

        Returns:
            Exit code (0 for success)
        """
        proc = self._process()
        if proc is None:
            print("❌ Daemon is not running")
            return 1

        try:
            proc.terminate()
            try:
                proc.wait(timeout=STOP_TIMEOUT_SECONDS)
            except psutil.TimeoutExpired:
                logger.warning(f"Process {proc.pid} ignored SIGTERM, killing it")
                proc.kill()
        except psutil.NoSuchProcess:
            logger.debug(f"Process {proc.pid} already gone")
        except psutil.AccessDenied as e:
            print(f"❌ Failed to stop daemon: {e}")
            return 1

        self.pid_file.unlink(missing_ok=True)
        print("✅ Daemon stopped")
        return 0

    def _run_daemon(self) -> int:
        """Run the sync loop in this process until a signal stops it"""
        if not self.config:
            logger.error("Cannot run daemon without configuration")
            return 1

        try:
            self.pid_file.write_text(str(os.getpid()))
            setup_file_logging(self.config, self.config_dir)
            signal.signal(signal.SIGTERM, self._signal_handler)
            signal.signal(signal.SIGINT, self._signal_handler)

            logger.info("grocy-sync daemon starting...")
            self._daemon_loop()

        except KeyboardInterrupt:
            logger.info("Daemon interrupted by user")
        except Exception as e:
            logger.error(f"Daemon failed: {e}")
            return 1
        finally:
            if self.sync:
                self.sync.close()
            self.pid_file.unlink(missing_ok=True)
            logger.info("Daemon stopped")

        return 0

    def scheduled_sync(self) -> None:
        """One scheduled sync cycle"""
        logger.debug("Performing scheduled sync...")
        self.sync.refresh()
        if not self.sync.wait_until_idle(CYCLE_TIMEOUT_SECONDS):
            logger.warning(f"Sync cycle still running after {CYCLE_TIMEOUT_SECONDS}s")
            return

        view = self.sync.view
        if view.is_offline:
            logger.warning("⚠️ Scheduled sync could not reach the server")
        else:
            logger.info(f"✅ Scheduled sync completed: {len(view.items)} items on list "
                        f"{view.selected_list_id}, {view.undone_count} undone")

    def _daemon_loop(self) -> None:
        """Main daemon loop - perform scheduled syncs"""
        from .sync_orchestrator import create_sync

        self.sync = create_sync(self.config, self.config_dir)
        self.sync.load_from_database(download_after_loading=False)

        interval = self.config.sync_interval_seconds
        logger.info(f"Starting sync loop with {interval}s intervals")

        self.scheduler = BlockingScheduler(
            executors={'default': ThreadPoolExecutor(1)},  # one cycle at a time
            timezone='UTC',
        )
        self.scheduler.add_job(
            self.scheduled_sync,
            'interval',
            seconds=interval,
            id='sync_job',
            max_instances=1,
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self.scheduler.start()

    def _signal_handler(self, signum: int, frame) -> None:
        """Handle shutdown signals gracefully"""
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.pid_file.unlink(missing_ok=True)
