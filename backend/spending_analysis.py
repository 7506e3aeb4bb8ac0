from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from http.client import HTTPException
import json
import logging
import os
from typing import Iterable, List, Optional, Protocol
from urllib.request import Request, urlopen

from backend.budget_engine import (
    UNKNOWN_CATEGORY_NAME,
    ZERO,
    BudgetSummary,
    Category,
    Expense,
    Period,
    budget_report,
    monthly_total,
    round_percentage,
    spending_by_category,
)

logger = logging.getLogger(__name__)

RECENT_TRANSACTION_LIMIT = 20
DEFAULT_MODEL = "llama-3.3-70b-versatile"
DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"

PROMPT_INSTRUCTIONS = """Please provide a brief analysis (max 200 words) covering:
1. Where is most money being spent?
2. Which categories are over budget or at risk?
3. One specific, actionable tip to save money

Use {symbol} for currency. Be direct and helpful."""


class AnalysisUnavailable(RuntimeError):
    """Raised when the text generator fails or returns no usable text."""


class Summarizer(Protocol):
    def summarize(self, prompt: str) -> str:
        ...


@dataclass(frozen=True)
class RecentTransaction:
    date: str
    category_name: str
    amount: Decimal
    description: str


@dataclass(frozen=True)
class SpendingSnapshot:
    period: Period
    total_spent: Decimal
    total_budget: Decimal
    unmatched: Decimal
    categories: List[BudgetSummary]
    recent_transactions: List[RecentTransaction]


@dataclass(frozen=True)
class SpendingAnalysis:
    summary: SpendingSnapshot
    narrative: Optional[str]
    narrative_available: bool
    error: Optional[str] = None


@dataclass
class GroqSummarizer:
    """Chat-completions client for the Groq OpenAI-compatible API."""

    api_key: Optional[str] = field(default_factory=lambda: os.getenv("GROQ_API_KEY"))
    model: str = field(default_factory=lambda: os.getenv("GROQ_MODEL", DEFAULT_MODEL))
    base_url: str = field(
        default_factory=lambda: os.getenv("GROQ_BASE_URL", DEFAULT_BASE_URL)
    )
    timeout_seconds: float = 20.0
    max_retries: int = 1
    temperature: float = 0.7
    max_tokens: int = 500

    def summarize(self, prompt: str) -> str:
        if not self.api_key:
            raise AnalysisUnavailable("GROQ API key not configured")

        last_error: Optional[AnalysisUnavailable] = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._complete(prompt)
            except AnalysisUnavailable as exc:
                last_error = exc
                logger.warning(
                    "Spending analysis attempt %d failed: %s", attempt + 1, exc
                )
        raise last_error

    def _complete(self, prompt: str) -> str:
        body = json.dumps(
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
            }
        ).encode("utf-8")
        request = Request(
            f"{self.base_url.rstrip('/')}/chat/completions",
            data=body,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                payload = json.load(response)
        except (OSError, HTTPException, ValueError) as exc:
            raise AnalysisUnavailable("Text generation API unavailable") from exc

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AnalysisUnavailable("Text generation response missing content") from exc
        if not isinstance(content, str) or not content.strip():
            raise AnalysisUnavailable("Text generation returned an empty response")
        return content


def build_snapshot(
    categories: Iterable[Category],
    expenses: Iterable[Expense],
    period: Period,
) -> SpendingSnapshot:
    category_list = list(categories)
    expense_list = list(expenses)
    spending = spending_by_category(category_list, expense_list, period)
    names = {category.id: category.name for category in category_list}

    in_period = [expense for expense in expense_list if period.contains(expense.date)]
    in_period.sort(key=_recency_key, reverse=True)
    recent = [
        RecentTransaction(
            date=expense.date.isoformat(),
            category_name=names.get(expense.category_id, UNKNOWN_CATEGORY_NAME),
            amount=expense.amount,
            description=expense.description or "",
        )
        for expense in in_period[:RECENT_TRANSACTION_LIMIT]
    ]

    return SpendingSnapshot(
        period=period,
        total_spent=monthly_total(expense_list, period),
        total_budget=sum((Decimal(str(c.limit)) for c in category_list), ZERO),
        unmatched=spending.unmatched,
        categories=budget_report(category_list, spending),
        recent_transactions=recent,
    )


def render_prompt(snapshot: SpendingSnapshot, currency_symbol: str = "¥") -> str:
    symbol = currency_symbol
    breakdown = [
        f"- {item.category_name}: {symbol}{_fmt(item.spent)} / {symbol}{_fmt(item.limit)}"
        f" ({round_percentage(item.percentage)}%) [{item.status}]"
        for item in snapshot.categories
    ]
    if snapshot.unmatched > ZERO:
        breakdown.append(
            f"- {UNKNOWN_CATEGORY_NAME}: {symbol}{_fmt(snapshot.unmatched)} (no budget)"
        )
    transactions = [
        f"- {txn.date}: {txn.category_name} - {symbol}{_fmt(txn.amount)}"
        + (f" ({txn.description})" if txn.description else "")
        for txn in snapshot.recent_transactions
    ]

    lines = [
        "You are a personal finance advisor analyzing expense data. Be concise and actionable.",
        "",
        f"EXPENSE DATA ({snapshot.period.start.isoformat()} to {snapshot.period.end.isoformat()}):",
        f"- Total Spent: {symbol}{_fmt(snapshot.total_spent)}",
        f"- Total Budget: {symbol}{_fmt(snapshot.total_budget)}",
        "",
        "CATEGORY BREAKDOWN:",
        *breakdown,
        "",
        "RECENT TRANSACTIONS:",
        *transactions,
        "",
        PROMPT_INSTRUCTIONS.format(symbol=symbol),
    ]
    return "\n".join(lines)


def build_analysis_prompt(
    categories: Iterable[Category],
    expenses: Iterable[Expense],
    period: Period,
    currency_symbol: str = "¥",
) -> str:
    return render_prompt(build_snapshot(categories, expenses, period), currency_symbol)


def analyze_spending(
    categories: Iterable[Category],
    expenses: Iterable[Expense],
    period: Period,
    summarizer: Summarizer,
    currency_symbol: str = "¥",
) -> SpendingAnalysis:
    """Compute the numeric summary and ask ``summarizer`` for a narrative.

    The generated text is passed through unchanged. When generation fails the
    summary is still returned and the narrative is marked unavailable.
    """
    snapshot = build_snapshot(categories, expenses, period)
    prompt = render_prompt(snapshot, currency_symbol)
    try:
        narrative = summarizer.summarize(prompt)
        if not isinstance(narrative, str) or not narrative.strip():
            raise AnalysisUnavailable("Text generation returned an empty response")
    except AnalysisUnavailable as exc:
        logger.warning("Spending analysis unavailable: %s", exc)
        return SpendingAnalysis(
            summary=snapshot,
            narrative=None,
            narrative_available=False,
            error=str(exc),
        )
    return SpendingAnalysis(summary=snapshot, narrative=narrative, narrative_available=True)


def _recency_key(expense: Expense) -> tuple:
    created = expense.created_at.isoformat() if expense.created_at else ""
    return (expense.date, created)


def _fmt(amount: Decimal) -> str:
    value = Decimal(str(amount))
    if value == value.to_integral_value():
        return f"{int(value):,}"
    return f"{value.normalize():,}"
