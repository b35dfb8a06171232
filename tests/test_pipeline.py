"""Tests for the completion pipeline entry points."""

import asyncio

import fitz
import pytest

from signflow.core.exceptions import NotFoundError
from signflow.notifications.dispatcher import NotificationDispatcher
from signflow.repositories.recipient import RecipientRepository
from signflow.repositories.workflow import WorkflowRepository
from signflow.services.pipeline import CompletionPipeline, run_pipeline_detached

CLIENT_ID = "test-client"


async def _completed_workflow(session, source_ref, *forms):
    """A workflow whose recipients submitted *forms* in order, marked completed."""
    workflows = WorkflowRepository(session, CLIENT_ID)
    recipients = RecipientRepository(session, CLIENT_ID)
    workflow = await workflows.create_workflow(source_ref)
    created = await recipients.add_recipients(
        workflow.id,
        [{"name": f"R{i}", "email": f"r{i}@example.com", "wants_completed_document": True}
         for i in range(len(forms))],
    )
    for recipient, form in zip(created, forms):
        assert await recipients.complete_if_pending(recipient, form)
    assert await workflows.mark_completed_if_active(workflow.id)
    await session.commit()
    return workflow


def _pipeline(session, store, gateway):
    return CompletionPipeline(
        session, CLIENT_ID, store=store, dispatcher=NotificationDispatcher(session, CLIENT_ID, gateway),
    )


@pytest.mark.asyncio
async def test_later_recipient_value_wins_in_document(session, store, gateway, source_ref):
    workflow = await _completed_workflow(
        session, source_ref, {"patient_name": "From R0", "notes": "R0 note"}, {"patient_name": "From R1"},
    )

    result = await _pipeline(session, store, gateway).run(workflow.id)

    with fitz.open(stream=await store.load(result.completed_document_ref), filetype="pdf") as doc:
        text = doc[0].get_text()
    assert "From R1" in text
    assert "From R0" not in text
    assert "R0 note" in text
    assert sorted(result.fill_report.filled) == ["notes", "patient_name"]
    assert result.notifications_sent == 2


@pytest.mark.asyncio
async def test_second_run_generates_nothing(session, store, gateway, source_ref):
    workflow = await _completed_workflow(session, source_ref, {})
    pipeline = _pipeline(session, store, gateway)

    first = await pipeline.run(workflow.id)
    gateway.sent.clear()
    second = await pipeline.run(workflow.id)

    assert first.generated == ["completed_document", "audit_document"]
    assert second.generated == []
    assert second.completed_document_ref == first.completed_document_ref
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_active_workflow_is_skipped(session, store, gateway, source_ref):
    workflow = await WorkflowRepository(session, CLIENT_ID).create_workflow(source_ref)
    await session.commit()

    result = await _pipeline(session, store, gateway).run(workflow.id)

    assert result.generated == []
    assert not (store.root / "completed").exists()


@pytest.mark.asyncio
async def test_unknown_workflow(session, store, gateway):
    with pytest.raises(NotFoundError):
        await _pipeline(session, store, gateway).run("missing")


@pytest.mark.asyncio
async def test_detached_run_uses_its_own_session(session, session_factory, store, gateway, source_ref):
    workflow = await _completed_workflow(session, source_ref, {"patient_name": "Jane"})

    result = await run_pipeline_detached(
        workflow.id,
        client_id=CLIENT_ID,
        session_factory=session_factory,
        gateway=gateway,
        store_factory=lambda: store,
    )

    assert result.ok
    stored = await WorkflowRepository(session, CLIENT_ID).refreshed(workflow.id)
    assert stored.completed_document_ref == result.completed_document_ref
    assert stored.audit_document_ref == result.audit_document_ref


@pytest.mark.asyncio
async def test_detached_run_swallows_crashes(session_factory, store, gateway, monkeypatch):
    async def explode(self, workflow_id):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(CompletionPipeline, "run", explode)

    result = await run_pipeline_detached(
        "any", client_id=CLIENT_ID, session_factory=session_factory, gateway=gateway,
        store_factory=lambda: store,
    )

    assert result is None


@pytest.mark.asyncio
async def test_concurrent_runs_keep_one_artifact_per_stage(
    session, session_factory, store, gateway, source_ref,
):
    workflow = await _completed_workflow(session, source_ref, {"patient_name": "Jane"})

    async def run():
        async with session_factory() as s:
            return await _pipeline(s, store, gateway).run(workflow.id)

    first, second = await asyncio.gather(run(), run())

    generated = first.generated + second.generated
    assert sorted(generated) == ["audit_document", "completed_document"]
    assert first.completed_document_ref == second.completed_document_ref
    assert first.audit_document_ref == second.audit_document_ref

    assert len(list((store.root / "completed").glob("*.pdf"))) == 1
    assert len(list((store.root / "audit").glob("*.pdf"))) == 1
    # one completed-document email, sent by whichever run recorded the ref
    assert len(gateway.to("r0@example.com")) == 1

    stored = await WorkflowRepository(session, CLIENT_ID).refreshed(workflow.id)
    assert store.path_for(stored.completed_document_ref).exists()
    assert store.path_for(stored.audit_document_ref).exists()


@pytest.mark.asyncio
async def test_document_ref_is_recorded_only_once(session, store, gateway, source_ref):
    workflow = await _completed_workflow(session, source_ref, {})
    workflows = WorkflowRepository(session, CLIENT_ID)

    assert await workflows.record_completed_document_ref(workflow.id, "completed/winner.pdf") is True
    assert await workflows.record_completed_document_ref(workflow.id, "completed/loser.pdf") is False
    await session.commit()

    stored = await workflows.refreshed(workflow.id)
    assert stored.completed_document_ref == "completed/winner.pdf"
