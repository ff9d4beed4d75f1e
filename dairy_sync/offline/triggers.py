# dairy_sync/offline/triggers.py
import logging
import threading
from typing import List, Optional

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """
    Decides when a tenant's SyncEngine runs: once at startup, on every
    offline -> online transition, and optionally on a fixed interval.
    Every trigger goes through `engine.sync()` (or `full_sync()` at startup),
    so overlapping triggers collapse into a skipped cycle.
    """

    def __init__(self, engine, run_in_background: bool = True):
        self.engine = engine
        self.store = engine.store
        self.tenant_id = engine.tenant_id
        self.run_in_background = run_in_background

        status = self.store.get_sync_status(self.tenant_id)
        self.is_online = status.is_online if status else True

        self._stop = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None
        self._workers: List[threading.Thread] = []
        self._workers_lock = threading.Lock()

    def start(self):
        """Startup trigger: pull remote changes, then push local ones."""
        if self.is_online:
            return self._dispatch(self.engine.full_sync, 'startup')
        return None

    def set_online(self, online: bool):
        """Report connectivity. Going back online triggers a sync."""
        was_online = self.is_online
        self.is_online = online
        self.store.update_sync_status(self.tenant_id, is_online=online)

        if online and not was_online:
            logger.info(f"Tenant {self.tenant_id} back online, syncing")
            return self.trigger('reconnect')
        if not online and was_online:
            logger.info(f"Tenant {self.tenant_id} went offline")
        return None

    def trigger(self, reason: str = 'manual'):
        if not self.is_online:
            logger.debug(f"Sync trigger '{reason}' ignored while offline (tenant: {self.tenant_id})")
            return None
        return self._dispatch(self.engine.sync, reason)

    def _dispatch(self, target, reason: str):
        if not self.run_in_background:
            return self._run(target, reason)

        thread = threading.Thread(
            target=self._run, args=(target, reason),
            name=f'sync-{self.tenant_id}-{reason}', daemon=True
        )
        with self._workers_lock:
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(thread)
            thread.start()
        return thread

    def _run(self, target, reason: str):
        try:
            return target()
        except Exception as e:
            # Background threads have no caller to propagate to.
            logger.error(f"Sync triggered by '{reason}' failed for tenant {self.tenant_id}: {e}", exc_info=True)
            if not self.run_in_background:
                raise
            return None

    def start_auto_sync(self, interval_seconds: float) -> threading.Thread:
        """Run `trigger('interval')` every `interval_seconds` until stop()."""
        if self._timer_thread is not None and self._timer_thread.is_alive():
            return self._timer_thread

        self._stop.clear()

        def loop():
            while not self._stop.wait(interval_seconds):
                if self.is_online:
                    self._run(self.engine.sync, 'interval')

        self._timer_thread = threading.Thread(target=loop, name=f'sync-timer-{self.tenant_id}', daemon=True)
        self._timer_thread.start()
        logger.info(f"Auto sync every {interval_seconds}s for tenant {self.tenant_id}")
        return self._timer_thread

    def stop(self, timeout: float = 5.0):
        """Stop the timer and wait for in-flight triggered syncs, so the store can be closed."""
        self._stop.set()
        if self._timer_thread is not None:
            self._timer_thread.join(timeout)
            self._timer_thread = None
        with self._workers_lock:
            workers, self._workers = self._workers, []
        for worker in workers:
            worker.join(timeout)
            if worker.is_alive():
                logger.warning(f"Sync thread {worker.name} still running after {timeout}s")
