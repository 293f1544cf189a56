"""Built-in tool implementations: calculator and weather lookup."""

from __future__ import annotations

import ast
import asyncio
import logging
import math
import operator
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, Field

from chat_agent.agent.registry import ToolRegistry, ToolSpec
from chat_agent.config import ToolConfig
from chat_agent.errors import ToolExecutionError

logger = logging.getLogger(__name__)

MATH_TOOL = "math_evaluator"
WEATHER_TOOL = "get_weather"

WEATHER_API_URL = "https://api.weatherapi.com/v1/current.json"


class MathToolInput(BaseModel):
    expression: str = Field(
        min_length=1,
        description='The mathematical expression to evaluate (e.g., "2 * (3 + 4)", "sqrt(16)", "cos(pi/4)")',
    )


class WeatherToolInput(BaseModel):
    location: str = Field(
        min_length=1,
        description='The city name, city and country, or coordinates (e.g., "London", "Paris, France")',
    )


def register_builtin_tools(registry: ToolRegistry, *, weather: WeatherService) -> None:
    """Register the calculator and weather tools.

    Tools:
    - `math_evaluator`: safe arithmetic evaluation.
    - `get_weather`: current conditions with per-location caching.
    """

    async def _evaluate(input_data: MathToolInput) -> str:
        return await asyncio.to_thread(evaluate_expression, input_data.expression)

    async def _weather(input_data: WeatherToolInput) -> str:
        return await weather.lookup(input_data.location)

    registry.register(
        ToolSpec(
            name=MATH_TOOL,
            description=(
                "Evaluates mathematical expressions safely. Use for calculations, "
                "equations, or mathematical operations."
            ),
            args_schema=MathToolInput,
            handler=_evaluate,
            tags=["math"],
        )
    )
    registry.register(
        ToolSpec(
            name=WEATHER_TOOL,
            description="Get current weather information for any location worldwide.",
            args_schema=WeatherToolInput,
            handler=_weather,
            tags=["weather", "http"],
        )
    )


# Calculator

_BINARY_OPS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "sqrt": math.sqrt,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "log": math.log,
    "ln": math.log,
    "log10": math.log10,
    "exp": math.exp,
    "abs": abs,
    "round": round,
    "floor": math.floor,
    "ceil": math.ceil,
}

_CONSTANTS: dict[str, float] = {"pi": math.pi, "e": math.e, "tau": math.tau}

_MAX_RESULT_DIGITS = 1000


def evaluate_expression(expression: str) -> str:
    """Evaluate an arithmetic expression and describe the result."""

    cleaned = expression.strip()
    try:
        tree = ast.parse(_normalize_expression(cleaned), mode="eval")
        value = _eval_node(tree.body)
        formatted = _format_number(value)
    except (SyntaxError, ValueError, TypeError, ZeroDivisionError, OverflowError) as exc:
        logger.info("Could not evaluate %r: %s", cleaned, exc)
        raise ToolExecutionError(
            f'I couldn\'t evaluate the expression "{cleaned}". '
            "Please check if it's a valid mathematical expression."
        ) from exc
    return f'The result of "{cleaned}" is {formatted}'


def _normalize_expression(expression: str) -> str:
    text = expression.replace("×", "*").replace("÷", "/").replace("^", "**")
    text = re.sub(r"√\s*(\d+(?:\.\d+)?)", r"sqrt(\1)", text)
    return text.replace("√", "sqrt")


def _eval_node(node: ast.AST) -> Any:
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        if isinstance(node.value, bool):
            raise ValueError("booleans are not numbers")
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _eval_node(node.left)
        right = _eval_node(node.right)
        if isinstance(node.op, ast.Pow):
            _check_power(left, right)
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in _FUNCTIONS
        and not node.keywords
    ):
        args = [_eval_node(arg) for arg in node.args]
        return _FUNCTIONS[node.func.id](*args)
    raise ValueError(f"unsupported syntax: {type(node).__name__}")


def _check_power(base: Any, exponent: Any) -> None:
    # Estimated digit count of the result, bounded before any big-integer work.
    magnitude = abs(base)
    if magnitude > 1 and exponent > 0 and math.log10(magnitude) * exponent > _MAX_RESULT_DIGITS:
        raise ValueError("result too large")


def _format_number(value: Any) -> str:
    if isinstance(value, complex):
        raise ValueError("complex result")
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e15:
            return str(int(value))
        return format(value, ".12g")
    return str(value)


# Weather


@dataclass(slots=True)
class _CacheEntry:
    value: str
    expires_at: float


class WeatherService:
    """weatherapi.com lookup with a short-lived cache per normalized location.

    Successful reports are cached for `weather_cache_ttl_seconds`; timeouts and
    errors are cached briefly so a failing upstream is not hammered. Expired
    entries are dropped on write and the cache holds at most
    `weather_cache_max_entries` locations, oldest evicted first. Without an
    API key a mock report is returned.
    """

    def __init__(
        self,
        api_key: str | None,
        config: ToolConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api_key = api_key
        self.config = config or ToolConfig()
        self._client = client
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}

    async def lookup(self, location: str) -> str:
        location = location.strip() or self.config.weather_default_location
        key = location.lower()
        now = self._clock()
        cached = self._cache.get(key)
        if cached is not None and cached.expires_at > now:
            return cached.value

        if not self.api_key:
            report = (
                f"Weather service is currently unavailable. Here's a mock weather report "
                f"for {location}: It's partly cloudy with a temperature of 22°C (72°F)."
            )
            return self._remember(key, report, self.config.weather_cache_ttl_seconds)

        try:
            response = await self._fetch(location)
        except httpx.TimeoutException:
            logger.warning("Weather lookup timed out for %r", location)
            message = (
                f"The weather service is taking too long to respond for {location}. "
                "Please try again in a moment."
            )
            return self._remember(key, message, self.config.weather_timeout_cache_ttl_seconds)
        except httpx.HTTPError as exc:
            logger.warning("Weather lookup failed for %r: %s", location, exc)
            return self._remember(
                key, self._error_message(location), self.config.weather_error_cache_ttl_seconds
            )

        if response.status_code == 400:
            return (
                f"I couldn't find weather data for \"{location}\". "
                "Please check the location name and try again."
            )
        if not response.is_success:
            logger.warning("Weather API returned HTTP %d for %r", response.status_code, location)
            return self._remember(
                key, self._error_message(location), self.config.weather_error_cache_ttl_seconds
            )

        try:
            report = _format_report(response.json())
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Unexpected weather payload for %r: %s", location, exc)
            return self._remember(
                key, self._error_message(location), self.config.weather_error_cache_ttl_seconds
            )
        return self._remember(key, report, self.config.weather_cache_ttl_seconds)

    async def _fetch(self, location: str) -> httpx.Response:
        params = {"key": self.api_key, "q": location, "aqi": "no"}
        timeout = self.config.weather_http_timeout_seconds
        if self._client is not None:
            return await self._client.get(WEATHER_API_URL, params=params, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.get(WEATHER_API_URL, params=params)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def _remember(self, key: str, value: str, ttl: float) -> str:
        now = self._clock()
        for stale in [k for k, entry in self._cache.items() if entry.expires_at <= now]:
            del self._cache[stale]
        self._cache.pop(key, None)
        self._cache[key] = _CacheEntry(value=value, expires_at=now + ttl)
        while len(self._cache) > self.config.weather_cache_max_entries:
            self._cache.pop(next(iter(self._cache)))
        return value

    @staticmethod
    def _error_message(location: str) -> str:
        return (
            f"I'm having trouble getting weather data for {location} right now. "
            "Please try again later."
        )


def _format_report(payload: dict[str, Any]) -> str:
    current = payload["current"]
    place = payload["location"]
    return "\n".join(
        [
            f"Current weather in {place['name']}, {place['country']}:",
            f"Temperature: {current['temp_c']}°C ({current['temp_f']}°F)",
            f"Conditions: {current['condition']['text']}",
            f"Feels like: {current['feelslike_c']}°C",
            f"Humidity: {current['humidity']}%",
            f"Wind: {current['wind_kph']} km/h",
        ]
    )
