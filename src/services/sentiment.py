# src/services/sentiment.py

from typing import Dict, Iterable, List

import httpx
from pydantic import ValidationError

from src.config import Settings
from src.core.models import MarketNews, NewsItem, Sentiment
from src.utils.retry import RETRYABLE_HTTP_ERRORS, raise_for_status, retry_with_backoff
from src.utils.tracing import setup_logger_with_tracing

LOGGER = setup_logger_with_tracing(__name__, service_name="market-sentiment")

POSITIVE_KEYWORDS = [
    "growth", "profit", "increase", "rise", "gain",
    "positive", "success", "strong", "improve",
]
NEGATIVE_KEYWORDS = [
    "loss", "decline", "decrease", "fall", "negative",
    "weak", "poor", "risk", "concern",
]

UNAVAILABLE_SUMMARY = "Unable to fetch market news"


def classify_sentiment(text: str) -> Sentiment:
    """
    Keyword vote over one article's text.

    Counts how many distinct listed keywords occur as substrings (case-insensitive);
    ties are neutral.

    Example:
        classify_sentiment("Profit growth despite risk") -> Sentiment.POSITIVE
    """
    lowered = (text or "").lower()
    positive = sum(1 for word in POSITIVE_KEYWORDS if word in lowered)
    negative = sum(1 for word in NEGATIVE_KEYWORDS if word in lowered)

    if positive > negative:
        return Sentiment.POSITIVE
    if negative > positive:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


def overall_sentiment(sentiments: Iterable[Sentiment]) -> Sentiment:
    sentiments = list(sentiments)
    positive = sentiments.count(Sentiment.POSITIVE)
    negative = sentiments.count(Sentiment.NEGATIVE)
    if positive > negative:
        return Sentiment.POSITIVE
    if negative > positive:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


def summarize(items: List[NewsItem], overall: Sentiment) -> List[str]:
    if not items:
        return ["No recent news found"]

    positive = sum(1 for item in items if item.sentiment == Sentiment.POSITIVE)
    negative = sum(1 for item in items if item.sentiment == Sentiment.NEGATIVE)

    summary = [
        f"Found {len(items)} recent news items",
        f"Overall market sentiment: {overall.value}",
    ]
    if positive:
        summary.append(f"{positive} positive developments reported")
    if negative:
        summary.append(f"{negative} concerning developments noted")
    return summary


def _as_text(value):
    if isinstance(value, (int, float)):
        return str(value)
    return value or ""


def news_item(result: Dict) -> NewsItem:
    """
    One search result as a classified NewsItem. Numbers in text fields are kept as text.

    Raises:
        ValidationError: a field holds something other than text or a number
    """
    item = NewsItem(
        title=_as_text(result.get("title")),
        description=_as_text(result.get("description")),
        url=_as_text(result.get("url")),
        publish_time=_as_text(result.get("publishTime") or result.get("age")) or None,
    )
    item.sentiment = classify_sentiment(f"{item.title} {item.description}")
    return item


class MarketSentimentReporter:
    """News search + keyword sentiment per listed symbol. Never raises."""

    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self.http = http
        self.settings = settings

    def search_query(self, symbol: str) -> str:
        s = self.settings
        return (
            f"{s.news_exchange_prefix}:{symbol} stock {s.news_exchange_name} "
            f"{s.news_jurisdiction} company news."
        )

    async def _search(self, symbol: str) -> Dict:
        headers = {
            "Accept": "application/json",
            "X-Subscription-Token": self.settings.news_api_key,
        }

        async def fetch():
            response = await self.http.get(
                self.settings.news_search_url,
                params={"q": self.search_query(symbol)},
                headers=headers,
                timeout=self.settings.http_timeout_seconds,
            )
            return raise_for_status(response).json()

        return await retry_with_backoff(
            fetch,
            max_retries=self.settings.read_retries,
            base_delay=self.settings.retry_base_delay,
            retry_on=RETRYABLE_HTTP_ERRORS,
        )

    async def market_news(self, symbol: str) -> MarketNews:
        try:
            data = await self._search(symbol)
            results = data.get("results") or []
            if not isinstance(results, list):
                raise ValueError("'results' is not a list")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            LOGGER.error(f"Error fetching market news for {symbol}: {e}")
            return MarketNews(symbol=symbol, summary=[UNAVAILABLE_SUMMARY])

        items = []
        for result in results:
            if not isinstance(result, dict):
                continue
            try:
                items.append(news_item(result))
            except ValidationError as e:
                LOGGER.warning(f"Skipping malformed news item for {symbol}: {e.error_count()} invalid fields")

        overall = overall_sentiment(item.sentiment for item in items)
        LOGGER.info(f"{symbol}: {len(items)} news items, overall {overall.value}")
        return MarketNews(
            symbol=symbol,
            news=items,
            overall_sentiment=overall,
            summary=summarize(items, overall),
        )

    async def generate_report(self, symbols: List[str]) -> Dict[str, MarketNews]:
        """Sequential news lookup; every symbol keeps its own entry."""
        report = {}
        for symbol in symbols:
            report[symbol] = await self.market_news(symbol)
        return report
