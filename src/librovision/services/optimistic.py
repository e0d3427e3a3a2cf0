"""Optimistic mutation executor.

Every write in the domain services is described as an OptimisticMutation and
run through one MutationExecutor:

1. pending: cancel in-flight reads of the touched keys, snapshot them
2. applied: write every predicted value (no await in between)
3. success: discard the snapshots, reconcile, invalidate what the mutation names
4. failure: restore every snapshot verbatim, notify, raise MutationError

Overlapping mutations on one key settle last-settled-wins: a rollback only
restores the snapshot its own mutation took.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from librovision.config import settings
from librovision.entities import MutationContext, QueryKey
from librovision.exceptions import MutationError

from .query_client import QueryClient, RetryPolicy

logger = logging.getLogger(__name__)

Updater = Callable[[Any], Any]
Predictor = Callable[[QueryClient], Mapping[QueryKey, Updater]]
ErrorNotifier = Callable[[str, BaseException], None]


@dataclass
class OptimisticMutation:
    """Description of one optimistic write.

    Attributes:
        name: Mutation name for logs and errors (e.g. "like_review")
        commit: Coroutine function performing the remote write
        affected_keys: Keys to cancel and snapshot before predicting
        predict: Returns ``{key: updater}``; each updater receives the cached
            data (None when absent) and returns the predicted value, or None to
            leave the key untouched. Keys it returns are snapshotted too.
        reconcile: Called with the query client and the commit result on success
        rollback: Replaces the default snapshot restore on failure
        invalidate: Keys (or a function of the commit result returning keys)
            to invalidate on success; empty keeps the optimistic values
        retry: Retry count override (None uses the executor's policy)
    """

    name: str
    commit: Callable[[], Awaitable[Any]]
    affected_keys: Sequence[QueryKey] = ()
    predict: Predictor | None = None
    reconcile: Callable[[QueryClient, Any], None] | None = None
    rollback: Callable[[QueryClient, MutationContext], None] | None = None
    invalidate: Sequence[QueryKey] | Callable[[Any], Sequence[QueryKey]] = field(default_factory=tuple)
    retry: int | None = None


def log_mutation_error(mutation: str, error: BaseException) -> None:
    """Default error sink: the place a UI would raise a toast."""
    logger.warning("Mutation %s failed and was rolled back: %s", mutation, error)


class MutationExecutor:
    """Runs OptimisticMutations against a QueryClient.

    Example:
        ```python
        executor = MutationExecutor(query_client)

        await executor.execute(
            OptimisticMutation(
                name="like_book",
                commit=lambda: store.write(descriptor, payload),
                affected_keys=[query_keys.book("b1")],
                predict=lambda client: {
                    query_keys.book("b1"): lambda book: book and {**book, "current_user_is_liked": True},
                },
                invalidate=[query_keys.book("b1")],
            )
        )
        ```
    """

    def __init__(
        self,
        query_client: QueryClient,
        on_error: ErrorNotifier | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            query_client: Query cache the predictions are written to.
            on_error: Error sink called after rollback. Defaults to logging.
            retry_policy: Backoff for commits. Defaults to one retry.
        """
        self._client = query_client
        self._on_error = on_error or log_mutation_error
        self._retry = retry_policy or RetryPolicy(retries=settings.mutation_retries)

    def _begin(self, mutation: OptimisticMutation) -> MutationContext:
        """Snapshot and apply the prediction. Must not await."""
        context = MutationContext(mutation=mutation.name)

        if mutation.affected_keys:
            self._client.cancel_queries(*mutation.affected_keys)
        for key in mutation.affected_keys:
            context.capture(key, self._client.snapshot(key))

        predictions = mutation.predict(self._client) if mutation.predict else {}
        for key in predictions:
            if not context.has(key):
                self._client.cancel_queries(key)
                context.capture(key, self._client.snapshot(key))

        for key, updater in predictions.items():
            current = self._client.get_query_data(key)
            predicted = updater(current)
            if predicted is not None:
                self._client.set_query_data(key, predicted)

        return context

    def _rollback(self, mutation: OptimisticMutation, context: MutationContext) -> None:
        if mutation.rollback is not None:
            mutation.rollback(self._client, context)
            if not context.consumed:
                context.discard()
            return

        for key, snapshot in context.consume().items():
            self._client.restore(key, snapshot)

    async def execute(self, mutation: OptimisticMutation) -> Any:
        """Run one mutation through the optimistic protocol.

        Returns:
            The commit result

        Raises:
            MutationError: After rollback, if the commit failed
        """
        context = self._begin(mutation)
        logger.debug("Mutation %s applied to %d keys", mutation.name, len(context.snapshots))

        try:
            result = await self._retry.run(
                mutation.commit, retries=mutation.retry, label=f"mutation {mutation.name}"
            )
        except asyncio.CancelledError:
            self._rollback(mutation, context)
            raise
        except Exception as e:
            self._rollback(mutation, context)
            self._on_error(mutation.name, e)
            raise MutationError(mutation.name, e) from e

        context.discard()
        if mutation.reconcile is not None:
            mutation.reconcile(self._client, result)

        keys = mutation.invalidate(result) if callable(mutation.invalidate) else mutation.invalidate
        if keys:
            self._client.invalidate_queries(*keys)
        return result

    @property
    def query_client(self) -> QueryClient:
        return self._client
