"""
Job Dispatcher — in-process queues that decouple triggers (cron, chat, HTTP) from execution.

Three queues (reports, messages, system), each an asyncio.Queue drained by its own
worker pool. A worker routes a payload to exactly one Orchestrator entry point and
delivers the result to the payload's chat.
"""

import asyncio
import logging
from typing import Optional, Union

from adsteward.config import Settings, get_settings
from adsteward.schemas import (
    ClarificationRequest, CreateProposalJob, ReportJob, SyncJob, UserQuestionJob, job_payload_adapter,
)

logger = logging.getLogger(__name__)

REPORTS = "reports"
MESSAGES = "messages"
SYSTEM = "system"

QUEUE_FOR_KIND = {
    "report": REPORTS,
    "user_question": MESSAGES,
    "create_proposal": MESSAGES,
    "sync": SYSTEM,
}

FAILURE_MESSAGES = {
    "report": "❌ Something went wrong while generating the report.",
    "user_question": "❌ Something went wrong while processing your message.",
    "create_proposal": "❌ Something went wrong while drafting the proposal.",
    "sync": "❌ Data sync failed.",
}

Job = Union[ReportJob, UserQuestionJob, CreateProposalJob, SyncJob]


class JobDispatcher:

    def __init__(self, orchestrator, transport, settings: Optional[Settings] = None):
        self.orchestrator = orchestrator
        self.transport = transport
        self.settings = settings or get_settings()
        self.queues: dict[str, asyncio.Queue] = {name: asyncio.Queue() for name in (REPORTS, MESSAGES, SYSTEM)}
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def enqueue(self, payload: Union[Job, dict]) -> str:
        """Validate and queue a job; returns the queue name it landed on."""
        job = job_payload_adapter.validate_python(payload) if isinstance(payload, dict) else payload
        queue_name = QUEUE_FOR_KIND[job.kind]
        await self.queues[queue_name].put(job)
        logger.info(f"Enqueued {job.kind} job on '{queue_name}' (depth {self.queues[queue_name].qsize()})")
        return queue_name

    def start(self) -> None:
        if self._workers:
            return
        for name, queue in self.queues.items():
            for n in range(max(1, self.settings.queue_concurrency.get(name, 1))):
                self._workers.append(asyncio.create_task(self._worker(name, queue), name=f"{name}-worker-{n}"))
        logger.info(f"Job dispatcher started with {len(self._workers)} workers")

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Job dispatcher stopped")

    async def _worker(self, name: str, queue: asyncio.Queue) -> None:
        while True:
            job = await queue.get()
            try:
                await self.process(job)
            except Exception:
                logger.exception(f"Job {job.kind} on '{name}' failed")
            finally:
                queue.task_done()

    async def process(self, job: Job) -> None:
        """Run one job. On failure, tell the chat and re-raise."""
        logger.info(f"Processing {job.kind} job")
        try:
            if isinstance(job, ReportJob):
                await self._run_report(job)
            elif isinstance(job, UserQuestionJob):
                await self._run_question(job)
            elif isinstance(job, CreateProposalJob):
                await self._run_proposal(job)
            elif isinstance(job, SyncJob):
                await self._run_sync(job)
            else:
                raise ValueError(f"Unknown job kind: {getattr(job, 'kind', job)!r}")
        except Exception:
            chat_id = getattr(job, "chat_id", None)
            if chat_id is not None:
                try:
                    await self.transport.send_message(chat_id, FAILURE_MESSAGES.get(job.kind, "❌ Something went wrong."))
                except Exception as notify_error:
                    logger.error(f"Could not send failure notice to chat {chat_id}: {notify_error}")
            raise

    async def _run_report(self, job: ReportJob) -> None:
        if job.report_type == "weekly":
            result = await self.orchestrator.generate_weekly_report(notify=False)
        else:
            result = await self.orchestrator.generate_daily_report(notify=False)
        await self.orchestrator.deliver_report(job.chat_id, result)

    async def _run_question(self, job: UserQuestionJob) -> None:
        result = await self.orchestrator.handle_user_question(job.question, job.user_id)
        if isinstance(result, ClarificationRequest):
            await self.transport.send_message(job.chat_id, result.text, reply_markup=_clarification_keyboard(result))
        else:
            await self.transport.send_message(job.chat_id, result.text)

    async def _run_proposal(self, job: CreateProposalJob) -> None:
        draft = await self.orchestrator.generate_campaign_proposal(job.description, job.user_id)
        keyboard = {
            "inline_keyboard": [[
                {"text": "✅ Launch", "callback_data": f"proposal_approve:{draft.proposal_id}"},
                {"text": "❌ Discard", "callback_data": f"proposal_reject:{draft.proposal_id}"},
            ]]
        }
        await self.transport.send_message(
            job.chat_id,
            f"{draft.text}\n\nFocus switched to this proposal; keep chatting to refine it.",
            reply_markup=keyboard,
        )

    async def _run_sync(self, job: SyncJob) -> None:
        summary = await self.orchestrator.sync_yandex_data(job.mode)
        if job.chat_id is None:
            return
        text = (
            f"🔄 Sync ({summary.mode}) {summary.date_from} – {summary.date_to}: "
            f"{summary.campaigns} campaigns, {summary.stats} stat rows, {summary.keywords} keywords"
        )
        if summary.auxiliary_failures:
            text += f"\n⚠️ Keywords/modifiers unavailable for: {', '.join(summary.auxiliary_failures)}"
        await self.transport.send_message(job.chat_id, text)


def _clarification_keyboard(request: ClarificationRequest) -> Optional[dict]:
    rows = [[{"text": c.name[:60], "callback_data": f"campaign:{c.id}"}] for c in request.campaigns]
    rows += [[{"text": p.title[:60], "callback_data": f"proposal:{p.id}"}] for p in request.proposals]
    return {"inline_keyboard": rows} if rows else None
