from dataclasses import dataclass
from typing import Dict, Optional, TextIO
import asyncio
import json
from pathlib import Path
from time import time


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    requests: int = 0
    cost: float = 0.0


@dataclass
class TokenPricing:
    """Price per million tokens."""
    input_per_million: float = 0.5
    output_per_million: float = 2.0

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens * self.input_per_million + output_tokens * self.output_per_million) / 1_000_000


class TokenTracker:
    """Accumulates chat token usage per model, optionally appending JSONL entries."""

    def __init__(self, log_file: Optional[Path] = None, log_buffer: Optional[TextIO] = None,
                 pricing: Optional[Dict[str, TokenPricing]] = None):
        self.log_file = log_file
        self.log_buffer = log_buffer
        self.pricing = pricing or {}
        self._default_pricing = TokenPricing()
        self._usage: Dict[str, TokenUsage] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    def _price(self, model: str) -> TokenPricing:
        return self.pricing.get(model, self._default_pricing)

    async def add_usage(self, model: str, input_tokens: int, output_tokens: int) -> None:
        if self._closed:
            raise RuntimeError("TokenTracker is closed")
        cost = self._price(model).cost(input_tokens, output_tokens)
        async with self._lock:
            usage = self._usage.setdefault(model, TokenUsage())
            usage.input_tokens += input_tokens
            usage.output_tokens += output_tokens
            usage.requests += 1
            usage.cost += cost
            self._log_usage(model, input_tokens, output_tokens, cost)

    async def get_usage(self, model: Optional[str] = None) -> TokenUsage:
        async with self._lock:
            if model is not None:
                usage = self._usage.get(model, TokenUsage())
                return TokenUsage(usage.input_tokens, usage.output_tokens, usage.requests, usage.cost)
            total = TokenUsage()
            for usage in self._usage.values():
                total.input_tokens += usage.input_tokens
                total.output_tokens += usage.output_tokens
                total.requests += usage.requests
                total.cost += usage.cost
            return total

    async def get_cost(self) -> float:
        return (await self.get_usage()).cost

    def _log_usage(self, model: str, input_tokens: int, output_tokens: int, cost: float) -> None:
        if not (self.log_file or self.log_buffer):
            return
        line = json.dumps({
            'timestamp': time(),
            'model': model,
            'input_tokens': input_tokens,
            'output_tokens': output_tokens,
            'cost': cost,
        })
        if self.log_buffer:
            self.log_buffer.write(line + '\n')
            self.log_buffer.flush()
        if self.log_file:
            with open(str(self.log_file), 'a', encoding='utf-8') as f:
                f.write(line + '\n')

    async def close(self) -> None:
        async with self._lock:
            self._closed = True
            if self.log_buffer:
                self.log_buffer.flush()

    async def __aenter__(self) -> 'TokenTracker':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
