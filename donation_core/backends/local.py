import hashlib
import json
import logging
import os
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional

from donation_core.config import INPUT_FILE_NAME, OUTPUT_FILE_NAME
from donation_core.decorators import WorkerApp, get_app
from donation_core.errors import MarketplaceError
from donation_core.runtime import (
    AppOrder, BaseMarketplace, ComputeOrderSpec, DealView, RunContext,
    TaskState, TaskStatus, WalletSession,
)


logger = logging.getLogger(__name__)


def derive_task_id(deal_id: str, index: int = 0) -> str:
    """Task ids are derived from the deal id and the task's index in the deal."""
    digest = hashlib.sha256(f"{deal_id}:{index}".encode("utf-8")).hexdigest()
    return f"0x{digest}"


class LocalMarketplace(BaseMarketplace):
    """
    Local marketplace for development and testing.

    Orders are matched immediately against the worker apps registered with
    ``@worker_app``; each task then runs on a thread pool with its own input
    and output directories under ``base_dir/tasks/<task_id>``.
    """

    def __init__(
        self,
        base_dir: Path = Path(".donation"),
        max_workers: int = 4,
        secrets: Optional[Dict[str, str]] = None,
    ):
        self.base_dir = base_dir
        self.deals_dir = self.base_dir / "deals"
        self.tasks_dir = self.base_dir / "tasks"
        self.deals_dir.mkdir(parents=True, exist_ok=True)
        self.tasks_dir.mkdir(parents=True, exist_ok=True)
        self.secrets = dict(secrets or {})
        self._executor = ThreadPoolExecutor(max_workers=max_workers)

    def _get_app(self, app_name: str) -> WorkerApp:
        import workloads  # noqa: F401  registers the bundled worker apps

        app = get_app(app_name)
        if app is None:
            raise MarketplaceError(
                f"App '{app_name}' not found. "
                f"Make sure it's defined as a @worker_app decorated function."
            )
        return app

    def _task_dir(self, task_id: str) -> Path:
        return self.tasks_dir / task_id

    def _write_atomic(self, path: Path, text: str):
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)

    def _save_status(self, status: TaskStatus):
        self._write_atomic(
            self._task_dir(status.task_id) / "status.json",
            status.model_dump_json(indent=2),
        )

    def _error_message(self, output_file: Path) -> Optional[str]:
        try:
            document = json.loads(output_file.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        if isinstance(document, dict) and document.get("error"):
            return document.get("message")
        return None

    def _execute(self, app: WorkerApp, task_id: str):
        task_dir = self._task_dir(task_id)
        context = RunContext(
            task_id=task_id,
            input_dir=task_dir / "iexec_in",
            output_dir=task_dir / "iexec_out",
            secrets=self.secrets,
        )
        self._save_status(TaskStatus(task_id=task_id, state=TaskState.RUNNING))

        try:
            exit_code = app.run(context)
        except Exception as e:
            logger.exception("App %s crashed on task %s", app.name, task_id)
            status = TaskStatus(task_id=task_id, state=TaskState.FAILED, status_message=str(e))
        else:
            if exit_code == 0:
                status = TaskStatus(task_id=task_id, state=TaskState.COMPLETED)
            else:
                message = self._error_message(context.output_dir / OUTPUT_FILE_NAME)
                status = TaskStatus(
                    task_id=task_id,
                    state=TaskState.FAILED,
                    status_message=message or f"App exited with code {exit_code}",
                )
        self._save_status(status)
        logger.info("Task %s finished: %s", task_id, status.state.value)

    def match_orders(self, session: WalletSession, order: ComputeOrderSpec) -> str:
        app = self._get_app(order.app)

        deal_id = f"0x{uuid.uuid4().hex}{uuid.uuid4().hex}"
        task_id = derive_task_id(deal_id)

        deal = {
            "deal_id": deal_id,
            "tasks": {"0": task_id},
            "app": order.app,
            "requester": session.address,
            "workerpool": order.workerpool,
            "tag": order.tag,
        }
        self._write_atomic(self.deals_dir / f"{deal_id}.json", json.dumps(deal, indent=2))

        input_dir = self._task_dir(task_id) / "iexec_in"
        input_dir.mkdir(parents=True, exist_ok=True)
        (input_dir / INPUT_FILE_NAME).write_text(order.args, encoding="utf-8")
        self._save_status(TaskStatus(task_id=task_id, state=TaskState.SUBMITTED))

        self._executor.submit(self._execute, app, task_id)
        logger.info("Deal %s matched for app %s, task %s", deal_id, order.app, task_id)
        return deal_id

    def show_deal(self, deal_id: str) -> DealView:
        deal_file = self.deals_dir / f"{deal_id}.json"
        if not deal_file.exists():
            raise MarketplaceError(f"Deal {deal_id} not found")
        with open(deal_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        return DealView(deal_id=data["deal_id"], tasks=data["tasks"])

    def show_task(self, task_id: str) -> TaskStatus:
        status_file = self._task_dir(task_id) / "status.json"
        if not status_file.exists():
            raise MarketplaceError(f"Task {task_id} not found")
        return TaskStatus.model_validate_json(status_file.read_text(encoding="utf-8"))

    def fetch_results(self, task_id: str) -> bytes:
        status = self.show_task(task_id)
        if status.state != TaskState.COMPLETED:
            raise MarketplaceError(f"Task {task_id} is not completed (status: {status.state.value})")

        result_file = self._task_dir(task_id) / "iexec_out" / OUTPUT_FILE_NAME
        if not result_file.exists():
            raise MarketplaceError(f"No result for task {task_id}")
        return result_file.read_bytes()

    def fetch_app_orderbook(self, app: str) -> List[AppOrder]:
        import workloads  # noqa: F401

        if get_app(app) is None:
            return []
        return [AppOrder(app=app, appprice=0)]

    def shutdown(self, wait: bool = True):
        """Stop accepting tasks; with ``wait`` block until running ones finish."""
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def close(self, wait: bool = True):
        self.shutdown(wait=wait)
