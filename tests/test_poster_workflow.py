import asyncio

import pytest

from conftest import TODAY, Delayed, FakeProvider, make_image
from design_forge.batch_executor import BatchExecutor
from design_forge.exceptions import (
    EmptyBatch,
    GenerationFailed,
    InsufficientCredits,
    InvalidRequestError,
    NoImageReturned,
    WorkflowStateError,
)
from design_forge.models import ImageModel, VisualStyle, WorkflowKind, WorkflowState
from design_forge.quota_ledger import MemoryStore, QuotaLedger
from design_forge.workflows import PosterWorkflow


def make_flow(provider, builder, ledger):
    return PosterWorkflow(BatchExecutor(provider), builder, ledger)


async def ready_flow(provider, builder, ledger, product_image):
    provider.push(make_image("processed"))
    flow = make_flow(provider, builder, ledger)
    await flow.upload_source(product_image)
    flow.concept = "neon city"
    return flow


class StateRecorder:
    """记录工作流在每次服务商调用时所处的状态"""

    def __init__(self, provider, flow_ref):
        self.provider = provider
        self.flow_ref = flow_ref
        self.states = []
        self._generate = provider.generate

    async def generate(self, request):
        self.states.append(self.flow_ref[0].state)
        return await self._generate(request)


@pytest.mark.asyncio
async def test_upload_success_moves_to_awaiting_concept(provider, builder, ledger, product_image):
    processed = make_image("processed")
    provider.push(processed)
    flow = make_flow(provider, builder, ledger)

    result = await flow.upload_source(product_image)

    assert result == processed
    assert flow.state == WorkflowState.AWAITING_CONCEPT
    assert flow.processed_image == processed
    assert flow.source_image == product_image
    assert provider.calls[0].kind == WorkflowKind.BACKGROUND_REMOVAL


@pytest.mark.asyncio
async def test_background_removal_failure_discards_upload(provider, builder, ledger, product_image):
    provider.push(RuntimeError("cannot segment"))
    flow = make_flow(provider, builder, ledger)

    with pytest.raises(GenerationFailed):
        await flow.upload_source(product_image)

    assert flow.state == WorkflowState.UPLOADING_SOURCE
    assert flow.processed_image is None
    assert flow.source_image is None


@pytest.mark.asyncio
async def test_background_removal_without_image_returns_to_upload(provider, builder, ledger, product_image):
    provider.push(None)
    flow = make_flow(provider, builder, ledger)

    with pytest.raises(NoImageReturned):
        await flow.upload_source(product_image)

    assert flow.state == WorkflowState.UPLOADING_SOURCE


@pytest.mark.asyncio
async def test_paid_three_variation_batch(provider, builder, ledger, product_image):
    flow = await ready_flow(provider, builder, ledger, product_image)
    flow.model = ImageModel.IMAGEN_4
    flow.variations = 3
    flow.style = VisualStyle.RETRO
    flow.edit_prompt = "leftover"

    ref = [flow]
    recorder = StateRecorder(provider, ref)
    provider.generate = recorder.generate

    candidates = await flow.generate()

    assert recorder.states == [WorkflowState.GENERATING] * 3
    assert flow.state == WorkflowState.EDITING
    assert len(candidates) == 3
    assert candidates.selected_index == 0
    assert ledger.remaining == 22
    assert flow.style == VisualStyle.NONE
    assert flow.edit_prompt == ""


@pytest.mark.asyncio
async def test_free_tier_batch_costs_nothing(provider, builder, ledger, product_image):
    flow = await ready_flow(provider, builder, ledger, product_image)
    flow.model = ImageModel.GEMINI_NANO
    flow.variations = 4

    await flow.generate()

    assert ledger.remaining == 25


@pytest.mark.asyncio
async def test_insufficient_credits_never_reaches_provider(provider, builder, product_image):
    ledger = QuotaLedger(
        MemoryStore({QuotaLedger.STORAGE_KEY: {"date": TODAY.isoformat(), "remainingCredits": 2}}),
        capacity=25,
        today=lambda: TODAY,
    )
    flow = await ready_flow(provider, builder, ledger, product_image)
    flow.model = ImageModel.IMAGEN_4
    flow.variations = 3
    calls_before = len(provider.calls)

    with pytest.raises(InsufficientCredits):
        await flow.generate()

    assert len(provider.calls) == calls_before
    assert ledger.remaining == 2
    assert flow.state == WorkflowState.AWAITING_CONCEPT


@pytest.mark.asyncio
async def test_generate_requires_concept(provider, builder, ledger, product_image):
    flow = await ready_flow(provider, builder, ledger, product_image)
    flow.concept = "  "

    with pytest.raises(InvalidRequestError):
        await flow.generate()


@pytest.mark.asyncio
async def test_generate_before_upload_is_rejected(provider, builder, ledger):
    flow = make_flow(provider, builder, ledger)
    with pytest.raises(WorkflowStateError):
        await flow.generate()


@pytest.mark.asyncio
async def test_failed_batch_reverts_and_keeps_credits_spent(provider, builder, ledger, product_image):
    flow = await ready_flow(provider, builder, ledger, product_image)
    flow.model = ImageModel.IMAGEN_4
    flow.variations = 2
    provider.push(None, RuntimeError("boom"))

    with pytest.raises(EmptyBatch):
        await flow.generate()

    assert flow.state == WorkflowState.AWAITING_CONCEPT
    assert flow.candidates.is_empty
    assert ledger.remaining == 23


@pytest.mark.asyncio
async def test_reference_image_is_sent(provider, builder, ledger, product_image):
    flow = await ready_flow(provider, builder, ledger, product_image)
    flow.reference_image = make_image("ref")

    await flow.generate()

    assert provider.calls[-1].images == [flow.processed_image, flow.reference_image]


@pytest.mark.asyncio
async def test_edit_replaces_only_selected(provider, builder, ledger, product_image):
    flow = await ready_flow(provider, builder, ledger, product_image)
    flow.variations = 3
    await flow.generate()
    flow.viewer.select(1)
    before = flow.candidates.images
    edited = make_image("edited")
    provider.push(edited)

    result = await flow.edit("make it blue")

    assert result == edited
    assert flow.candidates.selected_index == 1
    assert flow.candidates.images == (before[0], edited, before[2])
    assert provider.calls[-1].kind == WorkflowKind.EDIT
    assert provider.calls[-1].images == [before[1]]
    assert flow.state == WorkflowState.EDITING


@pytest.mark.asyncio
async def test_failed_edit_leaves_image_untouched(provider, builder, ledger, product_image):
    flow = await ready_flow(provider, builder, ledger, product_image)
    flow.variations = 2
    await flow.generate()
    before = flow.candidates.images
    provider.push(RuntimeError("cannot edit"))

    with pytest.raises(GenerationFailed):
        await flow.edit("add snow")

    assert flow.candidates.images == before
    assert flow.state == WorkflowState.EDITING


@pytest.mark.asyncio
async def test_edit_requires_text_or_style(provider, builder, ledger, product_image):
    flow = await ready_flow(provider, builder, ledger, product_image)
    await flow.generate()

    with pytest.raises(InvalidRequestError):
        await flow.edit("")

    flow.style = VisualStyle.CYBERPUNK
    provider.push(make_image("styled"))
    assert await flow.edit("") == make_image("styled")


@pytest.mark.asyncio
async def test_edit_outside_editing_is_rejected(provider, builder, ledger, product_image):
    flow = await ready_flow(provider, builder, ledger, product_image)
    with pytest.raises(WorkflowStateError):
        await flow.edit("x")


@pytest.mark.asyncio
async def test_start_over_discards_everything(provider, builder, ledger, product_image):
    flow = await ready_flow(provider, builder, ledger, product_image)
    flow.reference_image = make_image("ref")
    await flow.generate()

    flow.start_over()

    assert flow.state == WorkflowState.UPLOADING_SOURCE
    assert flow.source_image is None
    assert flow.processed_image is None
    assert flow.reference_image is None
    assert flow.concept == ""
    assert flow.candidates.is_empty


@pytest.mark.asyncio
async def test_close_canvas_returns_to_concept(provider, builder, ledger, product_image):
    flow = await ready_flow(provider, builder, ledger, product_image)
    await flow.generate()

    flow.close_canvas()

    assert flow.state == WorkflowState.AWAITING_CONCEPT
    assert flow.candidates.is_empty
    assert flow.processed_image is not None


@pytest.mark.asyncio
async def test_stale_batch_does_not_overwrite_newer_result(builder, ledger, product_image):
    gate = asyncio.Event()
    slow, fast = make_image("slow"), make_image("fast")
    provider = FakeProvider(make_image("processed"), Delayed(slow, gate=gate), fast)
    flow = make_flow(provider, builder, ledger)
    await flow.upload_source(product_image)
    flow.concept = "first"

    first = asyncio.ensure_future(flow.generate())
    await asyncio.sleep(0)
    flow.concept = "second"
    second = await flow.generate()

    gate.set()
    assert await first is None
    assert second.images == (fast,)
    assert flow.candidates.images == (fast,)
    assert flow.state == WorkflowState.EDITING


@pytest.mark.asyncio
async def test_stale_edit_after_start_over_is_dropped(builder, ledger, product_image):
    gate = asyncio.Event()
    provider = FakeProvider(make_image("processed"), make_image("poster"), Delayed(make_image("edited"), gate=gate))
    flow = make_flow(provider, builder, ledger)
    await flow.upload_source(product_image)
    flow.concept = "c"
    await flow.generate()

    pending = asyncio.ensure_future(flow.edit("brighter"))
    await asyncio.sleep(0)
    flow.start_over()
    gate.set()

    assert await pending is None
    assert flow.candidates.is_empty
    assert flow.state == WorkflowState.UPLOADING_SOURCE


@pytest.mark.asyncio
async def test_edit_landing_on_other_candidate_keeps_view(builder, ledger, product_image):
    gate = asyncio.Event()
    provider = FakeProvider(make_image("processed"))
    flow = make_flow(provider, builder, ledger)
    await flow.upload_source(product_image)
    flow.concept = "c"
    flow.variations = 3
    await flow.generate()

    provider.push(Delayed(make_image("edited"), gate=gate))
    pending = asyncio.ensure_future(flow.edit("brighter"))
    await asyncio.sleep(0)
    flow.viewer.select(2)
    flow.viewer.zoom_in()
    gate.set()

    assert await pending == make_image("edited")
    assert flow.candidates[0] == make_image("edited")
    assert flow.candidates.selected_index == 2
    assert flow.viewer.transform.scale == pytest.approx(1.5)


@pytest.mark.asyncio
async def test_edit_of_viewed_candidate_resets_view(provider, builder, ledger, product_image):
    flow = await ready_flow(provider, builder, ledger, product_image)
    await flow.generate()
    flow.viewer.zoom_in()
    provider.push(make_image("edited"))

    await flow.edit("brighter")

    assert flow.viewer.transform.is_identity
