"""Slack ingestion orchestrator.

Drives the import of one channel:

    fetch page -> process page -> (has_more? fetch page : done)

and, once the top-level messages are stored, fetches the replies of every
thread they belong to through a bounded worker pool.

Failure policy:
- A message or reply that cannot be parsed or stored is reported to the
  failure sink and skipped; the rest of the page or thread carries on.
- A transport error while fetching a page stops pagination for that channel.
  Thread replies of the messages already stored are still imported.
- A failed reply fetch is reported and affects only that thread.
- After ``CIRCUIT_BREAKER_THRESHOLD`` consecutive transport failures every
  further call fails fast and the import raises ``CircuitOpenError``.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Set, Tuple

from ..config import Config
from ..database.db_manager import DatabaseManager
from ..database.models import Channel, Message
from ..database.records import MessageRecord
from ..utils.backoff import TRANSPORT_ERRORS, call_with_backoff
from ..utils.circuit_breaker import CircuitBreaker, CircuitOpenError
from ..utils.logger import get_logger
from ..utils.rate_limiter import RateLimiter
from ..utils.reporting import FailureReporter, LoggingFailureReporter, report_failure
from ..utils.slugs import slugify
from .client import SlackClient, SlackCredential, get_next_cursor
from .normalizer import datetime_to_epoch_ms, to_local_message_params, to_local_user_params
from .payloads import PayloadError, RemoteMessage, UnrecognizedMessage, parse_message, parse_user
from .reconciler import IdentityReconciler

logger = get_logger(__name__)


@dataclass
class ImportSummary:
    """Outcome of an import run."""
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    threads: int = 0
    failed_threads: int = 0
    pages: int = 0
    complete: bool = True
    last_error: Optional[str] = None

    @property
    def error_count(self) -> int:
        return self.failed + self.failed_threads

    def merge(self, other: "ImportSummary") -> "ImportSummary":
        self.saved += other.saved
        self.skipped += other.skipped
        self.failed += other.failed
        self.threads += other.threads
        self.failed_threads += other.failed_threads
        self.pages += other.pages
        self.complete = self.complete and other.complete
        self.last_error = other.last_error or self.last_error
        return self


class ThreadTarget(NamedTuple):
    channel_id: str
    external_channel_id: str
    external_thread_id: str


class SlackImporter:
    """Imports Slack history, thread replies and users into the database."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        client: Optional[SlackClient] = None,
        reporter: Optional[FailureReporter] = None,
        reconciler: Optional[IdentityReconciler] = None,
        rate_limiter: Optional[RateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        reply_concurrency: int = Config.THREAD_REPLY_CONCURRENCY,
        max_retries: int = Config.MAX_RETRIES,
        retry_min_wait: float = Config.RETRY_MIN_WAIT,
        retry_max_wait: float = Config.RETRY_MAX_WAIT,
    ):
        self.db_manager = db_manager
        self.client = client or SlackClient()
        self.reporter = reporter or LoggingFailureReporter()
        self.reconciler = reconciler or IdentityReconciler(db_manager, self.client)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(Config.CIRCUIT_BREAKER_THRESHOLD)
        self.reply_concurrency = max(1, reply_concurrency)
        self.max_retries = max_retries
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait

    # Remote calls

    def call_api(self, method_name: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        """Call the Slack API with rate limiting, retries and circuit breaking."""
        def attempt():
            self.rate_limiter.wait_if_needed(method_name)
            return func(*args, **kwargs)

        return self.circuit_breaker.call(
            call_with_backoff,
            attempt,
            max_attempts=self.max_retries,
            min_wait=self.retry_min_wait,
            max_wait=self.retry_max_wait,
        )

    def paginate(
        self,
        method_name: str,
        func: Callable[..., Any],
        result_key: str,
        *args,
        **kwargs
    ) -> Iterator[Dict[str, Any]]:
        """Yield every item of a cursor-paginated Slack method."""
        cursor = None
        total_items = 0

        while True:
            response = self.call_api(method_name, func, *args, cursor=cursor, **kwargs)

            items = response.get(result_key) or []
            total_items += len(items)
            yield from items

            cursor = get_next_cursor(response)
            if not cursor:
                logger.info(f"Pagination complete for {method_name}. Total items: {total_items}")
                break

            logger.debug(f"Fetched {total_items} items so far from {method_name}")

    # Failure handling

    def _report(self, summary: ImportSummary, error: BaseException, context: str):
        summary.last_error = f"{context}: {error}"
        logger.error(f"{context}: {error}")
        report_failure(self.reporter, error)

    def _record_failure(self, summary: ImportSummary, error: BaseException, context: str):
        summary.failed += 1
        self._report(summary, error, context)

    # Messages

    def _prepare_message(self, payload: Dict[str, Any], channel_id: str) -> Optional[MessageRecord]:
        """Validate and map a payload; None for messages that are not archived."""
        message = parse_message(payload)
        if not message.is_content:
            return None
        return self._to_record(message, channel_id)

    def _to_record(self, message: RemoteMessage, channel_id: str) -> Optional[MessageRecord]:
        if message.kind == UnrecognizedMessage.kind:
            logger.debug(f"Archiving message {message.ts} with unrecognized subtype {message.subtype}")
        return to_local_message_params(message, channel_id)

    def _resolve_thread(self, record: MessageRecord):
        if not record.external_thread_id:
            return

        if record.is_thread_root:
            # The root is the earliest message of its thread
            thread = self.reconciler.find_or_create_thread(
                record.external_thread_id,
                record.channel_id,
                sent_at=datetime_to_epoch_ms(record.sent_at),
                slug=slugify(record.body),
            )
            record.thread_id = thread.id
        else:
            record.thread_id = self.reconciler.resolve_thread_id(record.external_thread_id, record.channel_id)

    def save_messages(
        self,
        payloads: Iterable[Dict[str, Any]],
        channel: Channel,
        credential: Optional[SlackCredential] = None,
        summary: Optional[ImportSummary] = None,
        orphaned_threads: Optional[List[ThreadTarget]] = None,
    ) -> List[Message]:
        """Upsert a page of top-level messages, one at a time, in page order.

        A skipped parent that still heads a thread (a deleted message left as
        a tombstone) is added to ``orphaned_threads`` so its replies can be
        imported.
        """
        summary = summary if summary is not None else ImportSummary()
        saved = []

        for payload in payloads:
            ts = payload.get("ts") if isinstance(payload, dict) else None
            try:
                message = parse_message(payload)
                if not message.is_content:
                    summary.skipped += 1
                    if message.starts_thread and orphaned_threads is not None:
                        logger.debug(f"Keeping thread {message.ts} of skipped {message.subtype} parent")
                        orphaned_threads.append(ThreadTarget(
                            channel.id, channel.external_channel_id, message.thread_ts or message.ts
                        ))
                    continue

                record = self._to_record(message, channel.id)
                if record is None:
                    summary.skipped += 1
                    continue

                self._resolve_thread(record)
                record.user_id = self.reconciler.resolve_user_id(
                    record.external_user_id, channel.account_id, credential
                )
                saved.append(self.db_manager.create_or_update_message(record))
                summary.saved += 1
            except Exception as e:
                self._record_failure(summary, e, f"Failed to save message {ts} in {channel.external_channel_id}")

        return saved

    def import_channel_history(
        self,
        channel: Channel,
        credential: SlackCredential,
        incremental: bool = False,
    ) -> ImportSummary:
        """Import a channel's history, then the replies of its threads.

        With ``incremental`` only messages newer than the last complete sync
        are requested.

        Raises:
            CircuitOpenError: if the circuit breaker opened during the import.
        """
        logger.info(f"Importing history for channel {channel.external_channel_id} ({channel.name})")

        summary = ImportSummary()
        oldest = None
        if incremental:
            sync_status = self.db_manager.get_sync_status(channel.id)
            if sync_status and sync_status.last_synced_ts:
                oldest = f"{sync_status.last_synced_ts:.6f}"
                logger.info(f"Resuming from last sync: {oldest}")

        cursor = None
        newest_ts: Optional[float] = None
        threaded: List[Message] = []
        orphaned: List[ThreadTarget] = []

        while True:
            try:
                response = self.call_api(
                    "conversations.history",
                    self.client.fetch_conversation_history,
                    channel.external_channel_id,
                    credential,
                    cursor=cursor,
                    oldest=oldest,
                )
            except (CircuitOpenError, *TRANSPORT_ERRORS) as e:
                summary.complete = False
                self._report(summary, e, f"Stopped paging {channel.external_channel_id} after {summary.pages} pages")
                break

            summary.pages += 1
            payloads = response.get("messages") or []
            saved = self.save_messages(payloads, channel, credential, summary, orphaned)

            for message in saved:
                ts = float(message.external_message_id)
                newest_ts = ts if newest_ts is None else max(newest_ts, ts)
                if message.thread_id:
                    threaded.append(message)

            cursor = get_next_cursor(response)
            logger.debug(
                f"Page {summary.pages} of {channel.external_channel_id}: "
                f"{len(payloads)} messages, has_more={response.get('has_more')}"
            )
            if not response.get("has_more") or not cursor:
                break

        if (threaded or orphaned) and not self.circuit_breaker.is_open:
            summary.merge(self.import_thread_replies(threaded, credential, channel.account_id, orphaned))
        elif threaded or orphaned:
            logger.warning(f"Skipping replies of {len(threaded) + len(orphaned)} threaded messages: circuit open")

        self.db_manager.update_sync_status(
            channel.id,
            # Pages run newest to oldest, so only a complete run may advance the marker
            newest_ts if summary.complete else None,
            is_complete=summary.complete,
            message_count=self.db_manager.get_messages_count(channel.id),
            error_count=summary.error_count,
            last_error=summary.last_error,
        )

        logger.info(
            f"Channel {channel.external_channel_id}: saved {summary.saved}, skipped {summary.skipped}, "
            f"failed {summary.failed}, threads {summary.threads} ({summary.failed_threads} failed), "
            f"pages {summary.pages}, complete={summary.complete}"
        )

        if self.circuit_breaker.is_open:
            raise CircuitOpenError(
                f"Import of {channel.external_channel_id} abandoned after "
                f"{self.circuit_breaker.consecutive_failures} consecutive transport failures"
            )
        return summary

    def import_message(
        self,
        channel: Channel,
        message_ts: str,
        credential: SlackCredential,
        thread_ts: Optional[str] = None,
    ) -> ImportSummary:
        """Import a single new or edited message, e.g. from a live event.

        Replies (``thread_ts`` differs from ``message_ts``) are not returned by
        conversations.history, so their whole thread is re-imported instead.
        """
        if thread_ts and thread_ts != message_ts:
            target = ThreadTarget(channel.id, channel.external_channel_id, thread_ts)
            return self._import_thread(target, credential, channel.account_id)

        response = self.call_api(
            "conversations.history",
            self.client.fetch_message,
            channel.external_channel_id,
            credential,
            message_ts,
        )
        payloads = [payload for payload in response.get("messages") or [] if payload.get("ts") == message_ts]
        if not payloads:
            logger.warning(f"Message {message_ts} not found in {channel.external_channel_id}")

        summary = ImportSummary(pages=1)
        orphaned: List[ThreadTarget] = []
        saved = self.save_messages(payloads, channel, credential, summary, orphaned)

        threaded = [message for message in saved if message.thread_id]
        if threaded or orphaned:
            summary.merge(self.import_thread_replies(threaded, credential, channel.account_id, orphaned))
        return summary

    # Threads

    def _thread_targets(
        self,
        messages: Iterable[Message],
        extra: Iterable[ThreadTarget] = (),
    ) -> List[ThreadTarget]:
        # Keyed by (channel, Slack thread ts) so each thread is fetched once
        targets: Dict[Tuple[str, str], ThreadTarget] = {
            (target.channel_id, target.external_thread_id): target for target in extra
        }
        seen: Set[str] = set()
        channels: Dict[str, Channel] = {}

        for message in messages:
            if not message.thread_id or message.thread_id in seen:
                continue
            seen.add(message.thread_id)

            thread = self.db_manager.get_thread(message.thread_id)
            channel = channels.get(message.channel_id) or self.db_manager.get_channel(message.channel_id)
            if thread is None or channel is None:
                continue

            channels[channel.id] = channel
            targets[(channel.id, thread.external_thread_id)] = ThreadTarget(
                channel.id, channel.external_channel_id, thread.external_thread_id
            )

        return list(targets.values())

    def import_thread_replies(
        self,
        messages: Iterable[Message],
        credential: SlackCredential,
        account_id: str,
        extra_targets: Iterable[ThreadTarget] = (),
    ) -> ImportSummary:
        """Fetch and store the replies of every thread the given messages belong to.

        ``extra_targets`` adds threads with no stored message, such as one
        whose parent was deleted. Threads are fetched concurrently, at most
        ``reply_concurrency`` at a time; this returns once all of them have
        finished.
        """
        targets = self._thread_targets(messages, extra_targets)
        summary = ImportSummary()
        if not targets:
            return summary

        logger.info(f"Importing replies of {len(targets)} threads")

        with ThreadPoolExecutor(max_workers=self.reply_concurrency) as executor:
            futures = {
                executor.submit(self._import_thread, target, credential, account_id): target
                for target in targets
            }

            for future in as_completed(futures):
                target = futures[future]
                try:
                    summary.merge(future.result())
                except Exception as e:
                    summary.failed_threads += 1
                    self._report(
                        summary, e,
                        f"Failed to import thread {target.external_thread_id} in {target.external_channel_id}",
                    )

        return summary

    def _import_thread(
        self,
        target: ThreadTarget,
        credential: SlackCredential,
        account_id: str,
    ) -> ImportSummary:
        response = self.call_api(
            "conversations.replies",
            self.client.fetch_thread_replies,
            target.external_thread_id,
            target.external_channel_id,
            credential,
        )

        if response.get("has_more"):
            # TODO: follow response_metadata.next_cursor for threads longer than one page
            logger.warning(
                f"Thread {target.external_thread_id} in {target.external_channel_id} has more "
                f"replies than one page; only the first page was imported"
            )

        return self.save_thread_replies(
            response.get("messages") or [],
            target.channel_id,
            target.external_thread_id,
            account_id,
            credential,
        )

    def save_thread_replies(
        self,
        replies: Iterable[Dict[str, Any]],
        channel_id: str,
        external_thread_id: str,
        account_id: str,
        credential: Optional[SlackCredential] = None,
    ) -> ImportSummary:
        """Upsert the replies of one thread, oldest first.

        The thread is created on first sight with the slug and timestamp of
        its earliest reply, whatever order the replies arrive in.
        """
        summary = ImportSummary(threads=1)
        records: List[MessageRecord] = []

        for payload in replies:
            ts = payload.get("ts") if isinstance(payload, dict) else None
            try:
                record = self._prepare_message(payload, channel_id)
            except PayloadError as e:
                self._record_failure(summary, e, f"Skipped reply {ts} in thread {external_thread_id}")
                continue

            if record is None:
                summary.skipped += 1
                continue
            records.append(record)

        records.sort(key=lambda record: record.sent_at)
        first = records[0] if records else None

        thread = self.reconciler.find_or_create_thread(
            external_thread_id,
            channel_id,
            sent_at=datetime_to_epoch_ms(first.sent_at) if first else 0,
            slug=slugify(first.body if first else ""),
        )

        for record in records:
            try:
                record.thread_id = thread.id
                record.user_id = self.reconciler.resolve_user_id(
                    record.external_user_id, account_id, credential
                )
                self.db_manager.create_or_update_message(record)
                summary.saved += 1
            except Exception as e:
                self._record_failure(
                    summary, e, f"Failed to save reply {record.external_message_id} in thread {external_thread_id}"
                )

        return summary

    # Users

    def import_users(self, raw_users: Iterable[Dict[str, Any]], account_id: str) -> int:
        """Bulk-create users, skipping ones already stored for the account.

        Returns the number of users created.
        """
        records = []
        for payload in raw_users:
            try:
                records.append(to_local_user_params(parse_user(payload), account_id))
            except PayloadError as e:
                logger.error(f"Skipped user payload: {e}")
                report_failure(self.reporter, e)

        created = self.db_manager.create_many_users(records, skip_duplicates=True)
        logger.info(f"Imported {created} new users ({len(records) - created} already known)")
        return created
