"""
测试公共夹具：脚本化的假服务商与内存额度账本
"""

import asyncio
from collections import deque
from datetime import date
from typing import Any, List, Optional

import pytest

from design_forge.batch_executor import BatchExecutor
from design_forge.models import ForgeConfig, ImagePayload, ProviderRequest, ProviderResponse, WorkflowKind
from design_forge.prompt_builder import PromptBuilder
from design_forge.provider_client import Conversation
from design_forge.quota_ledger import MemoryStore, QuotaLedger

TODAY = date(2026, 10, 19)


def make_image(tag: str) -> ImagePayload:
    return ImagePayload.from_bytes(tag.encode("utf-8"))


class Delayed:
    """延迟返回的脚本结果，用来控制完成顺序"""

    def __init__(self, result: Any, delay: float = 0.0, gate: Optional[asyncio.Event] = None):
        self.result = result
        self.delay = delay
        self.gate = gate


class FakeProvider:
    """
    脚本化的服务商

    generate() 每次调用按顺序取出一个脚本结果：
    ImagePayload -> 返回该图片；str -> 返回纯文本；None -> 空响应；
    Exception -> 抛出；Delayed -> 等待后再按上面的规则处理。
    脚本用完后默认返回一张新图片。
    """

    def __init__(self, *script):
        self.script = deque(script)
        self.calls: List[ProviderRequest] = []
        self.chat_script = deque()
        self.chat_calls: List[dict] = []
        self.conversations: List[Conversation] = []

    def push(self, *results):
        self.script.extend(results)

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        self.calls.append(request)
        call_no = len(self.calls)
        result = self.script.popleft() if self.script else make_image(f"auto-{call_no}")

        if isinstance(result, Delayed):
            if result.gate is not None:
                await result.gate.wait()
            if result.delay:
                await asyncio.sleep(result.delay)
            result = result.result

        if isinstance(result, BaseException):
            raise result
        if isinstance(result, ImagePayload):
            return ProviderResponse(images=[result])
        if isinstance(result, str):
            return ProviderResponse(text=result)
        return ProviderResponse()

    async def edit_in_place(self, image: ImagePayload, instruction: str) -> ImagePayload:
        response = await self.generate(ProviderRequest(kind=WorkflowKind.EDIT, model_id="edit", parts=(image, instruction)))
        return response.images[0]

    async def describe_image(self, image: ImagePayload) -> str:
        response = await self.generate(ProviderRequest(kind=WorkflowKind.PROMPT_FROM_IMAGE, model_id="text", parts=(image,), expects_image=False))
        return response.text

    async def start_conversation(self, system_prompt: str) -> Conversation:
        conversation = Conversation(system_prompt)
        self.conversations.append(conversation)
        return conversation

    async def send_turn(self, conversation, text=None, image=None) -> str:
        self.chat_calls.append({"conversation": conversation, "text": text, "image": image})
        result = self.chat_script.popleft() if self.chat_script else "好的"
        if isinstance(result, Delayed):
            if result.gate is not None:
                await result.gate.wait()
            result = result.result
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ledger(store):
    return QuotaLedger(
        store,
        capacity=25,
        free_tier_models=ForgeConfig().free_tier_models,
        today=lambda: TODAY,
    )


@pytest.fixture
def builder():
    return PromptBuilder(ForgeConfig())


@pytest.fixture
def executor(provider):
    return BatchExecutor(provider)


@pytest.fixture
def product_image():
    return make_image("product")
