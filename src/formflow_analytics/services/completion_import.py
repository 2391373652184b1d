"""Completion feed import with preview, dry-run and handoff reconciliation"""
import csv
import io
import json
import logging
import uuid
from datetime import datetime
from typing import List, Tuple, Optional, Dict, Any, Set, Union

from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.formflow_analytics.config import AnalyticsConfig
from src.formflow_analytics.exceptions import ValidationError, NotFoundError, ConflictError, StorageError
from src.formflow_analytics.models.external_completion import ExternalCompletion
from src.formflow_analytics.services.audit import log_action, get_actions
from src.formflow_analytics.services.csv_normalizer import (
    REQUIRED_FIELDS,
    map_column_name,
    normalize_email,
    normalize_phone,
    normalize_text,
    parse_completion_date,
)
from src.formflow_analytics.services.handoff import HandoffService
from src.formflow_analytics.services.matching import CompletionMatcher, MatchContext, MatchCandidate
from src.formflow_analytics.schemas.completion_import import (
    ColumnMapping,
    MappingPreview,
    CSVPreview,
    CompletionImportResult,
    RetryMatchResult,
)
from src.formflow_analytics.timeutil import utcnow, as_utc

logger = logging.getLogger(__name__)

IMPORT_SESSIONS: Dict[str, Dict[str, Any]] = {}

DELIMITERS = [",", ";", "\t", "|"]

IMPORT_ACTION = "completion_import"
REMATCH_ACTION = "completion_rematch"


def decode_csv_content(content: bytes) -> str:
    encodings = ["utf-8-sig", "cp1252"]
    for encoding in encodings:
        try:
            return content.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
    raise ValidationError("Unable to decode CSV file. Supported encodings: UTF-8, Windows-1252")


def detect_delimiter(csv_content: str) -> str:
    first_line = csv_content.splitlines()[0] if csv_content else ""
    counts = {d: first_line.count(d) for d in DELIMITERS}
    best = max(DELIMITERS, key=lambda d: counts[d])
    return best if counts[best] > 0 else ","


def read_csv(csv_content: str, delimiter: Optional[str] = None) -> Tuple[List[str], List[Dict[str, str]]]:
    delimiter = delimiter or detect_delimiter(csv_content)
    reader = csv.DictReader(io.StringIO(csv_content), delimiter=delimiter)
    headers = [h.strip() for h in (reader.fieldnames or [])]
    reader.fieldnames = headers

    rows = []
    for row in reader:
        rows.append({k: (v or "").strip() for k, v in row.items() if k is not None and isinstance(v, str)})
    return headers, rows


def create_mapping_preview(headers: List[str]) -> MappingPreview:
    """Suggest a mapping for every header.

    ``account_number`` is only suggested when exactly one header is an exact
    alias for it. Anything weaker is left for the operator to decide.
    """
    suggestions = {header: map_column_name(header) for header in headers}

    account_headers = [h for h, (canonical, _) in suggestions.items() if canonical == "account_number"]
    exact_account = [h for h in account_headers if suggestions[h][1] == 1.0]
    ambiguous: List[str] = []
    if account_headers and len(exact_account) != 1:
        ambiguous = account_headers

    columns = []
    unmapped = []
    mapped_targets = set()

    for header in headers:
        canonical, confidence = suggestions[header]
        if canonical == "account_number" and (ambiguous or header not in exact_account):
            canonical, confidence = None, 0.0
        if canonical in mapped_targets:
            canonical, confidence = None, 0.0

        if canonical:
            columns.append(ColumnMapping(original=header, mapped_to=canonical, confidence=confidence))
            mapped_targets.add(canonical)
        else:
            columns.append(ColumnMapping(original=header, mapped_to=None, confidence=0.0))
            unmapped.append(header)

    missing = [field for field in REQUIRED_FIELDS if field not in mapped_targets]

    return MappingPreview(
        columns=columns,
        unmapped_columns=unmapped,
        missing_required=missing,
        ambiguous=ambiguous,
    )


def preview_csv(
    content: Union[bytes, str],
    preview_rows: int = 5,
    store_session: bool = True,
) -> CSVPreview:
    csv_content = decode_csv_content(content) if isinstance(content, bytes) else content
    delimiter = detect_delimiter(csv_content)
    headers, rows = read_csv(csv_content, delimiter)
    mapping = create_mapping_preview(headers)

    session_id = None
    if store_session:
        session_id = str(uuid.uuid4())
        IMPORT_SESSIONS[session_id] = {
            "csv_content": csv_content,
            "mapping": mapping.as_mapping(),
            "created_at": utcnow(),
        }

    return CSVPreview(
        headers=headers,
        total_rows=len(rows),
        preview_rows=rows[:preview_rows],
        delimiter=delimiter,
        mapping=mapping,
        session_id=session_id,
    )


def get_import_session(session_id: str) -> Dict[str, Any]:
    if session_id not in IMPORT_SESSIONS:
        raise NotFoundError("Invalid or expired session ID. Please run preview again.")
    return IMPORT_SESSIONS[session_id]


def map_row_to_fields(row: Dict[str, str], mapping: Dict[str, str]) -> Dict[str, str]:
    mapped = {}
    for original, field in mapping.items():
        if field and original in row and row[original] != "":
            mapped[field] = row[original]
    return mapped


class CompletionImporter:
    def __init__(self, db: Session, config: AnalyticsConfig, matcher: Optional[CompletionMatcher] = None):
        self.db = db
        self.config = config
        self.matcher = matcher or CompletionMatcher(db, config)
        self.handoffs = HandoffService(db, config)

    def normalize_row(self, data: Dict[str, str]) -> Tuple[Dict[str, Any], List[str]]:
        warnings = []
        normalized: Dict[str, Any] = {k: normalize_text(v) for k, v in data.items()}

        if "customer_email" in normalized:
            email, warning = normalize_email(normalized["customer_email"])
            if warning:
                warnings.append(warning)
            if email:
                normalized["customer_email"] = email
            else:
                normalized.pop("customer_email")

        if "phone" in normalized:
            normalized["phone"] = normalize_phone(normalized["phone"])

        completed_at = None
        if "completion_date" in normalized:
            completed_at = parse_completion_date(normalized["completion_date"], self.config.tz)
            if completed_at is None:
                warnings.append(f"unparseable completion_date '{normalized['completion_date']}', using import time")
        now = utcnow()
        normalized["completed_at"] = min(completed_at, now) if completed_at else now

        return normalized, warnings

    def is_duplicate(self, instance_id: int, account_number: str) -> bool:
        return self.db.execute(
            select(ExternalCompletion.id).where(
                and_(
                    ExternalCompletion.instance_id == instance_id,
                    ExternalCompletion.account_number == account_number,
                )
            ).limit(1)
        ).first() is not None

    def claim(self, candidate: MatchCandidate, account_number: str, completed_at: datetime, meta: Dict[str, Any]) -> bool:
        """Complete the candidate handoff without committing. The caller commits it with the completion row."""
        try:
            self.handoffs.complete(
                candidate.handoff.handoff_token,
                account_number=account_number,
                metadata=meta,
                external_id=meta.get("external_id"),
                completed_at=completed_at,
                commit=False,
            )
        except ConflictError:
            logger.warning(f"Lost race completing handoff_id={candidate.handoff.id} for account_number={account_number}")
            return False
        return True

    def import_csv(
        self,
        content: Union[bytes, str],
        instance_id: int,
        mapping: Optional[Dict[str, str]] = None,
        dry_run: bool = True,
        match_handoffs: bool = True,
        actor: str = "system",
    ) -> CompletionImportResult:
        result = CompletionImportResult(dry_run=dry_run)

        try:
            csv_content = decode_csv_content(content) if isinstance(content, bytes) else content
        except ValidationError as e:
            result.success = False
            result.errors.append(str(e))
            return result

        headers, rows = read_csv(csv_content)
        if mapping is None:
            mapping = create_mapping_preview(headers).as_mapping()

        for field in REQUIRED_FIELDS:
            if not any(target == field and original in headers for original, target in mapping.items()):
                result.success = False
                result.errors.append(f'Required field "{field}" is not mapped.')
                return result

        seen_accounts: Set[str] = set()
        claimed: Set[int] = set()

        for idx, row in enumerate(rows):
            row_num = idx + 2
            result.rows_processed += 1

            data = map_row_to_fields(row, mapping)
            missing = [f for f in REQUIRED_FIELDS if not (data.get(f) or "").strip()]
            if missing:
                result.skipped += 1
                result.errors.append(f"Row {row_num}: Missing required fields: {', '.join(missing)}")
                continue

            normalized, warnings = self.normalize_row(data)
            for warning in warnings:
                result.errors.append(f"Row {row_num}: {warning}")

            account_number = normalized["account_number"]
            if account_number in seen_accounts or self.is_duplicate(instance_id, account_number):
                result.skipped += 1
                result.errors.append(f"Row {row_num}: Duplicate account number: {account_number}")
                continue
            seen_accounts.add(account_number)

            completed_at = normalized.pop("completed_at")
            candidate = None
            if match_handoffs:
                candidate = self.matcher.match(MatchContext(
                    instance_id=instance_id,
                    account_number=account_number,
                    completed_at=completed_at,
                    customer_email=normalized.get("customer_email"),
                    handoff_token=normalized.get("handoff_token"),
                    exclude_handoff_ids=claimed,
                ))

            if dry_run:
                result.imported += 1
                if candidate:
                    claimed.add(candidate.handoff.id)
                    result.matched += 1
                elif match_handoffs:
                    result.skipped += 1
                    result.unmatched += 1
                continue

            try:
                if candidate and not self.claim(candidate, account_number, completed_at, {"source": "import", **normalized}):
                    candidate = None
                if candidate:
                    claimed.add(candidate.handoff.id)

                completion = ExternalCompletion(
                    instance_id=instance_id,
                    source="import",
                    account_number=account_number,
                    customer_email=normalized.get("customer_email"),
                    external_id=normalized.get("external_id"),
                    completion_type=normalized.get("completion_type") or "enrollment",
                    handoff_id=candidate.handoff.id if candidate else None,
                    match_confidence=candidate.confidence if candidate else None,
                    match_strategy=candidate.strategy if candidate else None,
                    raw_data=json.dumps({"row_number": row_num, **normalized}),
                    processed=candidate is not None,
                    created_at=completed_at,
                )
                self.db.add(completion)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Completion import aborted at row {row_num}: {e}")
                result.errors.append(f"Row {row_num}: Database error: {e}")
                raise StorageError(f"Database error at row {row_num}", partial_result=result) from e

            result.imported += 1
            if candidate:
                result.matched += 1
            elif match_handoffs:
                result.skipped += 1
                result.unmatched += 1

        logger.info(
            f"Completion import {'dry-run' if dry_run else 'run'}: instance_id={instance_id}, "
            f"imported={result.imported}, matched={result.matched}, skipped={result.skipped}"
        )

        if not dry_run and result.imported > 0:
            log_action(
                db=self.db,
                action=IMPORT_ACTION,
                target_type="instance",
                target_id=instance_id,
                actor=actor,
                meta={
                    "imported": result.imported,
                    "matched": result.matched,
                    "skipped": result.skipped,
                    "unmatched": result.unmatched,
                    "error_count": len(result.errors),
                },
            )

        return result

    def import_session(
        self,
        session_id: str,
        instance_id: int,
        mapping: Optional[Dict[str, str]] = None,
        dry_run: bool = True,
        match_handoffs: bool = True,
        actor: str = "system",
    ) -> CompletionImportResult:
        """Run an import against CSV content held from an earlier preview."""
        session_data = get_import_session(session_id)
        result = self.import_csv(
            session_data["csv_content"],
            instance_id=instance_id,
            mapping=mapping or session_data["mapping"],
            dry_run=dry_run,
            match_handoffs=match_handoffs,
            actor=actor,
        )
        if not dry_run and result.success:
            del IMPORT_SESSIONS[session_id]
        return result

    def get_unmatched_completions(self, instance_id: Optional[int] = None, limit: int = 100) -> List[ExternalCompletion]:
        conditions = [ExternalCompletion.handoff_id.is_(None)]
        if instance_id is not None:
            conditions.append(ExternalCompletion.instance_id == instance_id)

        return list(self.db.execute(
            select(ExternalCompletion)
            .where(and_(*conditions))
            .order_by(ExternalCompletion.created_at.desc(), ExternalCompletion.id.desc())
            .limit(limit)
        ).scalars().all())

    def retry_matching(self, instance_id: Optional[int] = None, actor: str = "system") -> RetryMatchResult:
        """Re-run matching for stored completions that never found a handoff."""
        result = RetryMatchResult()
        claimed: Set[int] = set()

        for completion in self.get_unmatched_completions(instance_id, limit=1000):
            result.processed += 1
            try:
                raw = json.loads(completion.raw_data or "{}")
            except json.JSONDecodeError:
                raw = {}

            completed_at = as_utc(completion.created_at)
            candidate = self.matcher.match(MatchContext(
                instance_id=completion.instance_id,
                account_number=completion.account_number,
                completed_at=completed_at,
                customer_email=completion.customer_email,
                handoff_token=raw.get("handoff_token"),
                exclude_handoff_ids=claimed,
            ))
            if candidate is None:
                continue
            try:
                if not self.claim(candidate, completion.account_number, completed_at, {"source": "rematch", **raw}):
                    continue
                completion.handoff_id = candidate.handoff.id
                completion.match_confidence = candidate.confidence
                completion.match_strategy = candidate.strategy
                completion.processed = True
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                raise StorageError(f"Database error re-matching completion {completion.id}", partial_result=result) from e
            claimed.add(candidate.handoff.id)
            result.matched += 1

        logger.info(f"Completion re-match: processed={result.processed}, matched={result.matched}")
        if result.processed:
            log_action(
                db=self.db,
                action=REMATCH_ACTION,
                target_type="instance",
                target_id=instance_id,
                actor=actor,
                meta={"processed": result.processed, "matched": result.matched},
            )
        return result

    def get_import_history(self, limit: int = 20) -> List[Dict[str, Any]]:
        return get_actions(self.db, [IMPORT_ACTION, REMATCH_ACTION], limit=limit)
