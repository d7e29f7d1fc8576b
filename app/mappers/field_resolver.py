"""
app/mappers/field_resolver.py

Semantic field resolution for schema-less roaming files.

Uploaded files carry no schema contract, so the meaning of each column is
inferred from its name and the shape of its values:

- numeric concepts (revenue, usage, traffic, cost, expected and actual charge)
  are scored as ``10 * keyword_matches + numeric_cell_count`` over a sample;
- dimension concepts (partner, country) take the first column whose
  normalized name equals, then contains, one of the concept's terms;
- the date column is the one whose sampled cells parse as dates most often,
  provided a majority of its non-blank cells parse.

Resolution is a heuristic. Ambiguous files (for example both ``cost`` and
``expected_cost`` columns) can be misassigned; the banned-keyword lists keep
the common collisions apart. Ties go to the column encountered first.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass
from itertools import islice
from typing import Any

from app.mappers.values import parse_date, parse_number, to_text

DEFAULT_SAMPLE_SIZE = 1200

NET_REVENUE_KEYWORDS: tuple[str, ...] = (
    "netrevenue",
    "net_revenue",
    "totalnetrevenue",
    "net",
    "revenue",
    "billingvalue",
    "billingamount",
    "totalrevenue",
)
USAGE_KEYWORDS: tuple[str, ...] = (
    "usage",
    "totalusage",
    "usage_total",
    "volume",
    "totalvolume",
    "payload",
    "minutes",
    "totalminutes",
    "traffic",
    "datavolume",
)
PARTNER_TERMS: tuple[str, ...] = (
    "roaming_partner",
    "partner",
    "partner_name",
    "operator",
    "network",
    "carrier",
    "mno",
    "plmn",
)
COUNTRY_TERMS: tuple[str, ...] = (
    "country",
    "country_name",
    "destination_country",
    "origin_country",
    "region",
    "market",
)
DATE_KEYWORDS: tuple[str, ...] = (
    "date",
    "event_date",
    "usage_date",
    "billing_date",
    "period",
    "day",
    "timestamp",
    "time",
    "datetime",
    "created_at",
    "start_date",
    "end_date",
)
TRAFFIC_KEYWORDS: tuple[str, ...] = (
    "traffic",
    "usage",
    "volume",
    "mb",
    "gb",
    "minute",
    "minutes",
    "sms",
    "data",
    "call",
    "timesofattempted",
    "timesofanswered",
)
REVENUE_KEYWORDS: tuple[str, ...] = (
    "revenue",
    "rev",
    "income",
    "amount",
    "charge",
    "billed",
    "billing",
    "fee",
)
COST_KEYWORDS: tuple[str, ...] = (
    "cost",
    "expense",
    "payable",
    "wholesale",
    "charge",
    "billed",
    "fee",
)
EXPECTED_KEYWORDS: tuple[str, ...] = (
    "expected",
    "tariff",
    "rate",
    "agreed",
    "contract",
    "price",
)
ACTUAL_KEYWORDS: tuple[str, ...] = (
    "actual",
    "charged",
    "charge",
    "billed",
    "cost",
    "amount",
    "fee",
)
PAYMENT_DELAY_TERMS: tuple[str, ...] = (
    "paymentdelay",
    "payment_delay",
    "delaydays",
    "delay_days",
    "daystopay",
    "days_to_pay",
    "agingdays",
    "overduedays",
    "dayspastdue",
    "dso",
)
DUE_DATE_TERMS: tuple[str, ...] = (
    "due_date",
    "duedate",
    "payment_due_date",
    "invoice_due_date",
)
PAID_DATE_TERMS: tuple[str, ...] = (
    "paid_date",
    "payment_date",
    "paidat",
    "payment_paid_date",
    "settled_date",
)

_ADVISORY_LABELS: tuple[tuple[str, str], ...] = (
    ("revenue", "revenue"),
    ("traffic", "usage/traffic"),
    ("cost", "cost"),
    ("expected", "expected charge"),
    ("actual", "actual charge"),
    ("partner", "partner"),
    ("country", "country"),
    ("date", "date"),
)


def normalize_key(name: Any) -> str:
    """
    Lowercase and strip every non-alphanumeric character.
    """

    return "".join(ch for ch in str(name or "").strip().lower() if ch.isalnum())


def keyword_matches(column: str, keywords: Sequence[str]) -> int:
    """
    Count keywords that match a column name.

    A keyword matches on exact normalized equality, or by substring when the
    normalized keyword is longer than two characters (``mb`` must not match
    ``member_id``).
    """

    normalized = normalize_key(column)
    if not normalized:
        return 0
    score = 0
    for keyword in keywords:
        nk = normalize_key(keyword)
        if not nk:
            continue
        if normalized == nk or (len(nk) > 2 and nk in normalized):
            score += 1
    return score


def find_column_by_terms(columns: Sequence[str], terms: Sequence[str]) -> str | None:
    """
    First column whose normalized name equals a term, else the first that
    contains a term longer than two characters.
    """

    normalized_terms = [nt for nt in (normalize_key(term) for term in terms) if nt]
    for column in columns:
        if normalize_key(column) in normalized_terms:
            return column
    for column in columns:
        normalized = normalize_key(column)
        if any(len(term) > 2 and term in normalized for term in normalized_terms):
            return column
    return None


def pick_best_key(
    columns: Sequence[str],
    numeric_counts: Mapping[str, int],
    keywords: Sequence[str],
    banned: Sequence[str] = (),
) -> str | None:
    """
    Highest-scoring column for a numeric concept, or ``None``.

    Columns whose normalized name contains a banned keyword are skipped, as
    are columns with no keyword match at all. Strict ``>`` keeps the first
    column on ties.
    """

    banned_norm = [nb for nb in (normalize_key(b) for b in banned) if nb]
    best_key: str | None = None
    best_score = 0
    for column in columns:
        normalized = normalize_key(column)
        if any(b in normalized for b in banned_norm):
            continue
        matches = keyword_matches(column, keywords)
        if matches == 0:
            continue
        score = matches * 10 + numeric_counts.get(column, 0)
        if score > best_score:
            best_key, best_score = column, score
    return best_key


@dataclass(frozen=True)
class ResolvedFields:
    """
    Column chosen for each business concept; ``None`` when unresolved.
    """

    net_revenue: str | None = None
    usage: str | None = None
    partner: str | None = None
    country: str | None = None
    date: str | None = None
    revenue: str | None = None
    traffic: str | None = None
    cost: str | None = None
    expected: str | None = None
    actual: str | None = None
    payment_delay: str | None = None
    due_date: str | None = None
    paid_date: str | None = None

    @property
    def has_leakage_pair(self) -> bool:
        return self.expected is not None and self.actual is not None

    def advisories(self) -> list[str]:
        """Human-readable notes for every concept that did not resolve."""
        notes = [
            f"No {label} column detected."
            for attribute, label in _ADVISORY_LABELS
            if getattr(self, attribute) is None
        ]
        if not self.has_leakage_pair:
            notes.append(
                "Leakage detection needs both expected tariff and actual charge columns."
            )
        return notes

    def as_dict(self) -> dict[str, str | None]:
        return asdict(self)


class FieldResolver:
    """
    Infers :class:`ResolvedFields` from a column list and a row sample.

    Works on a single file or on a cross-file batch; only the first
    ``sample_size`` rows are inspected.
    """

    def __init__(self, *, sample_size: int = DEFAULT_SAMPLE_SIZE) -> None:
        self._sample_size = max(1, sample_size)

    @property
    def sample_size(self) -> int:
        return self._sample_size

    def resolve(
        self,
        columns: Sequence[str],
        rows: Iterable[Mapping[str, Any]],
    ) -> ResolvedFields:
        sample = [row for row in islice(rows, self._sample_size) if isinstance(row, Mapping)]
        ordered = _ordered_columns(columns, sample)
        numeric_counts = _numeric_counts(sample)

        partner = find_column_by_terms(ordered, PARTNER_TERMS)
        country = find_column_by_terms(ordered, COUNTRY_TERMS)
        due_date = find_column_by_terms(ordered, DUE_DATE_TERMS)
        paid_date = find_column_by_terms(ordered, PAID_DATE_TERMS)
        date_key = _resolve_date_column(ordered, sample, exclude={due_date, paid_date})

        # A column claimed as a dimension cannot double as a measure, so a
        # "Network" partner column is never read as net revenue.
        claimed = {partner, country, date_key, due_date, paid_date}
        measures = [column for column in ordered if column not in claimed]

        net_revenue = find_column_by_terms(measures, NET_REVENUE_KEYWORDS) or pick_best_key(
            measures, numeric_counts, NET_REVENUE_KEYWORDS
        )
        usage = find_column_by_terms(measures, USAGE_KEYWORDS) or pick_best_key(
            measures, numeric_counts, USAGE_KEYWORDS, banned=NET_REVENUE_KEYWORDS
        )
        revenue = (
            pick_best_key(measures, numeric_counts, REVENUE_KEYWORDS, banned=EXPECTED_KEYWORDS)
            or net_revenue
        )
        traffic = (
            pick_best_key(measures, numeric_counts, TRAFFIC_KEYWORDS, banned=EXPECTED_KEYWORDS)
            or usage
        )

        return ResolvedFields(
            net_revenue=net_revenue,
            usage=usage,
            partner=partner,
            country=country,
            date=date_key,
            revenue=revenue,
            traffic=traffic,
            cost=pick_best_key(measures, numeric_counts, COST_KEYWORDS, banned=EXPECTED_KEYWORDS),
            expected=pick_best_key(measures, numeric_counts, EXPECTED_KEYWORDS),
            actual=pick_best_key(measures, numeric_counts, ACTUAL_KEYWORDS, banned=EXPECTED_KEYWORDS),
            payment_delay=find_column_by_terms(measures, PAYMENT_DELAY_TERMS),
            due_date=due_date,
            paid_date=paid_date,
        )


def _ordered_columns(
    columns: Sequence[str],
    sample: Sequence[Mapping[str, Any]],
) -> list[str]:
    """Declared columns first, then any extra keys seen in the sample."""
    ordered: list[str] = []
    seen: set[str] = set()
    for column in list(columns) + [key for row in sample for key in row]:
        if column and column not in seen:
            seen.add(column)
            ordered.append(column)
    return ordered


def _numeric_counts(sample: Sequence[Mapping[str, Any]]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for row in sample:
        for key, value in row.items():
            if parse_number(value) is not None:
                counts[key] = counts.get(key, 0) + 1
    return counts


def _resolve_date_column(
    columns: Sequence[str],
    sample: Sequence[Mapping[str, Any]],
    *,
    exclude: set[str | None],
) -> str | None:
    """
    Column with the most date-parseable cells among those where a majority
    of non-blank cells parse.

    Purely numeric columns only qualify when their name looks like a date;
    otherwise an amount column full of values like ``45000`` would read as
    spreadsheet serial dates. Numeric cells must also be whole numbers, so a
    duration such as ``call_time_seconds = 40000.5`` never counts.
    """

    best_key: str | None = None
    best_parsed = 0
    for column in columns:
        if column in exclude:
            continue
        non_blank = 0
        parsed = 0
        numeric_only = True
        for row in sample:
            value = row.get(column)
            if value is None or to_text(value) == "":
                continue
            non_blank += 1
            number = parse_number(value) if _looks_numeric(value) else None
            if number is not None and not number.is_integer():
                continue
            if parse_date(value) is None:
                continue
            parsed += 1
            if number is None:
                numeric_only = False
        if non_blank == 0 or parsed * 2 <= non_blank:
            continue
        if numeric_only and keyword_matches(column, DATE_KEYWORDS) == 0:
            continue
        if parsed > best_parsed:
            best_key, best_parsed = column, parsed
    return best_key


def _looks_numeric(value: Any) -> bool:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return True
    text = to_text(value)
    return bool(text) and text.replace(".", "", 1).lstrip("+-").isdigit()
