"""
Transaction orchestrator: atomic batches with per-verb aggregation.

A batch is an ordered list of literal and templated operations executed on
one connection inside one transaction. Results are aggregated by the verb
each statement is classified as:

    ┌──────────┬──────────────────────────────────────────────────────┐
    │ SELECT   │ rows appended to ``envelope.rows``                   │
    │ INSERT   │ affected count summed, one inserted id per execution │
    │ UPDATE   │ affected count summed                                │
    │ DELETE   │ affected count summed                                │
    │ other    │ executed, nothing aggregated                         │
    └──────────┴──────────────────────────────────────────────────────┘

Either every operation commits or none has a durable effect: any native
failure rolls the transaction back and raises
:class:`~txsql.errors.TransactionError` with the driver diagnostics and the
batch payload.

Examples:
    >>> envelope = TransactionOrchestrator(adapter).run([
    ...     {"template": "INSERT INTO users (name) VALUES (:name)", "name": ["a", "b", "c"]},
    ...     {"text": "UPDATE users SET active = 1 WHERE name = 'a'"},
    ... ])
    >>> envelope.affected_row_count, len(envelope.inserted_ids)
    (4, 3)

Tags:
    transactions, atomicity, aggregation, txsql

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from txsql.adapters.base import DatabaseAdapter
from txsql.errors import ExceptionContext, StorageError, TransactionError, ValidationError
from txsql.logging import get_logger
from txsql.result import QueryResult, ResultEnvelope
from txsql.statements import LiteralOperation, Operation, TemplatedOperation, build_batch
from txsql.verbs import Verb, classify

logger = get_logger(__name__)


class TransactionOrchestrator:
    """Runs one batch at a time on an adapter it does not own."""

    path = "storage.db.transactions"

    def __init__(
        self,
        adapter: DatabaseAdapter,
        *,
        context: ExceptionContext | str | None = None,
    ):
        self._adapter = adapter
        self._context = ExceptionContext.parse(context) if context is not None else adapter.context

    def run(self, descriptors: Sequence[Mapping[str, Any] | Operation]) -> ResultEnvelope:
        """
        Validate, execute and commit ``descriptors`` as one unit.

        Raises:
            ValidationError: Malformed batch, raised before connecting.
            DatabaseConnectionError: The connection could not be opened.
            TransactionError: A statement, or the commit, failed; the
                transaction was rolled back.
        """
        try:
            operations = build_batch(descriptors)
        except ValidationError as exc:
            exc.with_context(context=self._context)
            raise
        plan = [(operation, classify(operation.text)) for operation in operations]

        adapter = self._adapter
        adapter.connect()

        envelope = ResultEnvelope()
        try:
            adapter.begin()
            for operation, verb in plan:
                if isinstance(operation, LiteralOperation):
                    result = adapter.run(operation.text, path=self.path)
                    self._aggregate(envelope, verb, result)
                else:
                    self._run_templated(envelope, operation, verb)
            adapter.commit()
        except Exception as exc:
            raise self._failed(exc, operations) from exc

        envelope.success = True
        logger.debug(
            "transaction_batch_committed",
            backend=adapter.config.name,
            operations=len(operations),
            rows=len(envelope.rows),
            affected=envelope.affected_row_count,
        )
        return envelope

    def _run_templated(
        self,
        envelope: ResultEnvelope,
        operation: TemplatedOperation,
        verb: Verb,
    ) -> None:
        # One execution per index of the value arrays
        for params in operation.bindings():
            result = self._adapter.run(operation.text, params, path=self.path)
            self._aggregate(envelope, verb, result)

    def _aggregate(self, envelope: ResultEnvelope, verb: Verb, result: QueryResult) -> None:
        if verb is Verb.SELECT:
            envelope.rows.extend(result.fetch_all())
        elif verb is Verb.INSERT:
            envelope.affected_row_count += result.affected_rows
            envelope.inserted_ids.append(self._adapter.last_insert_id(result))
        elif verb in (Verb.UPDATE, Verb.DELETE):
            envelope.affected_row_count += result.affected_rows

    def _failed(self, exc: Exception, operations: list[Operation]) -> TransactionError:
        if isinstance(exc, StorageError):
            message, details, cause = exc.message, dict(exc.details), exc.cause or exc
        else:
            message, details, cause = str(exc) or exc.__class__.__name__, {}, exc
        rolled_back = False
        try:
            rolled_back = self._adapter.rollback()
        except StorageError as rollback_exc:
            details["rollback_error"] = rollback_exc.message

        return TransactionError(
            message,
            path=self.path,
            context=self._context,
            details=details,
            cause=cause,
            payload=[operation.describe() for operation in operations],
            rolled_back=rolled_back,
        )


def execute_batch(
    adapter: DatabaseAdapter,
    descriptors: Sequence[Mapping[str, Any] | Operation],
    *,
    context: ExceptionContext | str | None = None,
) -> ResultEnvelope:
    """Run ``descriptors`` atomically on ``adapter``."""
    return TransactionOrchestrator(adapter, context=context).run(descriptors)


__all__ = ["TransactionOrchestrator", "execute_batch"]
