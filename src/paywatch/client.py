"""PayWatch - crypto payment intent client."""

from __future__ import annotations

import secrets
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable

from paywatch.addresses.allocator import AddressAllocator
from paywatch.addresses.pool import AddressPool, OrganizationSettings
from paywatch.core.assets import get_asset, normalize_fiat
from paywatch.core.config import Config
from paywatch.core.exceptions import UnsupportedAsset, ValidationError
from paywatch.core.logging import configure_logging, get_logger
from paywatch.core.types import (
    AddressUsage,
    AmountType,
    LedgerTransaction,
    PaymentIntent,
    PaymentStatus,
    StatusReport,
    to_decimal,
    utcnow,
)
from paywatch.intents.service import PaymentIntentStore
from paywatch.ledger.base import LedgerClient
from paywatch.ledger.xrpl import XRPLClient
from paywatch.pricing.quoter import RateQuoter
from paywatch.pricing.source import CoinGeckoPriceSource, PriceSource
from paywatch.qr import QRRenderer, create_qr_renderer
from paywatch.reconcile.reconciler import ConfirmedCallback, ConfirmationReconciler
from paywatch.reconcile.sources import (
    LedgerTransactionSource,
    SandboxTransactionSource,
    TransactionSource,
)
from paywatch.session.restore import DictSessionStore, SessionRestore, SessionStore
from paywatch.storage import get_storage
from paywatch.storage.base import StorageBackend
from paywatch.watcher.session import WatchSession
from paywatch.watcher.watcher import LedgerWatcher

# Destination tags are unsigned 32-bit on the ledger; wallets commonly accept only 31 bits
MAX_DESTINATION_TAG = 2_147_483_647


class PayWatch:
    """
    Main client for PayWatch.

    Creates payment intents for invoices, watches the ledger for the matching
    deposit and reports status. Multi-tenant: address pools and settings are
    kept per organization.

    Example:
        >>> client = PayWatch()
        >>> await client.add_address("org-1", "xrp", "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe")
        >>> intent = await client.create_intent("org-1", "inv-42", "50.00", "xrp")
        >>> report = await client.check_status(intent.id)
    """

    def __init__(
        self,
        config: Config | None = None,
        storage: StorageBackend | None = None,
        price_source: PriceSource | None = None,
        ledgers: dict[str, LedgerClient] | None = None,
        on_confirmed: ConfirmedCallback | None = None,
        clock: Callable[[], datetime] = utcnow,
        log_level: int | str | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Configuration (default: ``Config.from_env()``)
            storage: Storage backend (default: selected by ``config.storage_backend``)
            price_source: Spot price source (default: CoinGecko)
            ledgers: Ledger clients keyed by asset code (default: XRP Ledger)
            on_confirmed: Called once per intent when it becomes confirmed
            clock: Current time, injectable for tests
            log_level: Logging level (default from config)
        """
        self._config = config or Config.from_env()

        configure_logging(
            level=log_level or self._config.log_level,
            json_format=self._config.log_json,
        )
        self._logger = get_logger("client")

        if storage is None:
            kwargs: dict[str, Any] = {}
            if self._config.storage_backend == "redis" and self._config.redis_url:
                kwargs["redis_url"] = self._config.redis_url
            storage = get_storage(self._config.storage_backend, **kwargs)
        self._storage = storage
        self._clock = clock

        self._price_source = price_source or CoinGeckoPriceSource(
            base_url=self._config.price_api_url,
            api_key=self._config.price_api_key,
        )
        self._quoter = RateQuoter(self._price_source, cache_ttl=self._config.rate_cache_ttl)

        if ledgers is None:
            ledgers = {
                "xrp": XRPLClient(
                    self._config.ledger_rpc_url,
                    self._config.ledger_ws_url,
                    self._storage,
                    timeout=self._config.ledger_query_timeout,
                    subscription_timeout=self._config.subscription_timeout,
                )
            }
        self._ledgers = dict(ledgers)

        self._pool = AddressPool(self._storage)
        self._allocator = AddressAllocator(
            self._storage,
            self._pool,
            default_cooldown_hours=self._config.default_cooldown_hours,
            clock=clock,
        )
        self._intents = PaymentIntentStore(self._storage, clock=clock)

        source: TransactionSource
        if self._config.test_mode:
            source = SandboxTransactionSource(clock=clock)
        else:
            source = LedgerTransactionSource(self._ledgers)
        self._reconciler = ConfirmationReconciler(
            self._intents, source, on_confirmed=on_confirmed, clock=clock
        )
        self._watcher = LedgerWatcher(
            self._reconciler,
            self._subscription_ledger,
            poll_interval=self._config.poll_interval,
            clock=clock,
        )
        self._qr_renderer = create_qr_renderer(self._config)

        mode = "sandbox" if self._config.test_mode else ("testnet" if self._config.use_testnet else "mainnet")
        self._logger.info(
            f"Initializing PayWatch ({mode}, storage: {self._config.storage_backend}, "
            f"assets: {', '.join(sorted(self._ledgers))})"
        )

    @property
    def config(self) -> Config:
        return self._config

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    @property
    def pool(self) -> AddressPool:
        """Organization settings and address pools."""
        return self._pool

    @property
    def intents(self) -> PaymentIntentStore:
        return self._intents

    @property
    def reconciler(self) -> ConfirmationReconciler:
        return self._reconciler

    @property
    def watcher(self) -> LedgerWatcher:
        return self._watcher

    @property
    def qr_renderer(self) -> QRRenderer:
        return self._qr_renderer

    def _subscription_ledger(self, asset: str) -> LedgerClient | None:
        # The sandbox has nothing to subscribe to
        if self._config.test_mode:
            return None
        return self._ledgers.get(asset)

    # ==================== Intents ====================

    async def create_intent(
        self,
        organization_id: str,
        invoice_id: str,
        fiat_amount: AmountType,
        asset: str,
        fiat_currency: str | None = None,
        expires_in: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentIntent:
        """
        Create (or re-fetch) the payment intent for an invoice balance.

        An open intent for the same invoice, asset and amount is returned as
        is. An open intent for a different amount is expired and replaced,
        except an underpaid one: it already holds part of the payment, so it is
        returned whatever the amount and the customer tops it up.

        Args:
            organization_id: Organization that owns the address pool
            invoice_id: Invoice being paid
            fiat_amount: Amount due in fiat
            asset: Settlement asset code (e.g. "xrp")
            fiat_currency: Fiat code (default from config)
            expires_in: Seconds until the intent expires (default from config)
            metadata: Free-form data stored with the intent

        Raises:
            ValidationError: Non-positive amount or expiry
            UnsupportedAsset / UnsupportedFiatCurrency / RateUnavailable: Quoting failed
            OrganizationNotEligible / NoAddressesConfigured / AddressPoolExhausted:
                Allocation failed
        """
        info = get_asset(asset)
        if not self._config.test_mode and info.code not in self._ledgers:
            raise UnsupportedAsset(info.code, details={"reason": "no ledger client configured"})

        fiat = normalize_fiat(fiat_currency or self._config.default_fiat_currency)
        amount = to_decimal(fiat_amount)
        if amount <= 0:
            raise ValidationError(f"Fiat amount must be positive, got {amount}")
        ttl = expires_in if expires_in is not None else self._config.intent_ttl
        if ttl <= 0:
            raise ValidationError(f"expires_in must be positive, got {ttl}")

        open_intents = [
            i
            for i in await self._intents.find_open(invoice_id, info.code)
            if i.organization_id == organization_id
        ]
        for existing in open_intents:
            # Funds already arrived against it; the customer tops it up instead
            if existing.status == PaymentStatus.UNDERPAID:
                self._logger.info(
                    f"Invoice {invoice_id} has underpaid intent {existing.id}, "
                    f"returning it for a top-up"
                )
                return existing
        for existing in open_intents:
            if existing.fiat_amount == amount and existing.fiat_currency == fiat:
                self._logger.debug(f"Reusing open intent {existing.id} for invoice {invoice_id}")
                return existing

        quote = await self._quoter.quote(amount, fiat, info.code)
        address = await self._allocator.allocate(organization_id, info.code)
        settings = await self._pool.get_settings(organization_id)
        configured = settings.min_confirmations or self._config.default_min_confirmations

        # One open intent per (invoice, asset): the old amount is no longer due
        for superseded in open_intents:
            await self._watcher.stop(superseded.id)
            await self._intents.transition(superseded.id, PaymentStatus.EXPIRED)
            self._logger.info(f"Intent {superseded.id} superseded for invoice {invoice_id}")

        return await self._intents.create(
            organization_id=organization_id,
            invoice_id=invoice_id,
            fiat_amount=amount,
            quote=quote,
            address=address,
            ttl_seconds=ttl,
            min_confirmations=info.effective_confirmations(configured),
            tag=secrets.randbelow(MAX_DESTINATION_TAG) if info.requires_tag else None,
            test_mode=self._config.test_mode,
            testnet=self._config.use_testnet,
            metadata=metadata,
        )

    async def get_intent(self, intent_id: str) -> PaymentIntent:
        """Get an intent by id. Raises IntentNotFound."""
        return await self._intents.get(intent_id)

    async def check_status(
        self,
        intent_id: str,
        observed_amount: AmountType | None = None,
        tx_hash: str | None = None,
    ) -> StatusReport:
        """
        Reconcile an intent and report its status.

        Safe to call repeatedly and concurrently with the watcher. A payment
        that has not been seen yet is reported as ``pending``.

        Args:
            intent_id: Intent to check
            observed_amount: Amount the caller saw arrive (requires ``tx_hash``).
                Only a hint: the ledger's delivered amount is what counts.
            tx_hash: Hash of that transaction (requires ``observed_amount``). The
                transaction must pay the intent's address and destination tag.

        Raises:
            IntentNotFound: Unknown intent id
            ValidationError: Only one of observed_amount / tx_hash was given
        """
        if (observed_amount is None) != (tx_hash is None):
            raise ValidationError("observed_amount and tx_hash must be given together")

        candidate = None
        if tx_hash is not None:
            # Verified against the ledger before it can move the intent
            candidate = LedgerTransaction(hash=tx_hash, amount=to_decimal(observed_amount))
        return await self._reconciler.reconcile(intent_id, candidate)

    async def find_active_intent(
        self,
        invoice_id: str,
        asset: str | None = None,
    ) -> PaymentIntent | None:
        """Most recent intent for an invoice that has not expired (or is confirmed)."""
        code = get_asset(asset).code if asset is not None else None
        return await self._intents.find_active_for_invoice(invoice_id, code)

    async def sweep_expired(self) -> int:
        """Expire every pending intent past its deadline."""
        return await self._intents.expire_overdue()

    def payment_qr(self, intent: PaymentIntent) -> str:
        """QR image (data URL or image-service URL) for the intent's payment URI."""
        return self._qr_renderer.render(intent.payment_uri)

    # ==================== Observation ====================

    async def watch(self, intent_id: str) -> WatchSession:
        """Start observing an intent in the background."""
        intent = await self._intents.get(intent_id)
        return await self._watcher.watch(intent)

    async def stop_watching(self, intent_id: str) -> bool:
        return await self._watcher.stop(intent_id)

    @asynccontextmanager
    async def observe(self, intent_id: str) -> AsyncIterator[WatchSession]:
        """Observe an intent for the duration of an ``async with`` block."""
        intent = await self._intents.get(intent_id)
        async with self._watcher.observe(intent) as session:
            yield session

    def session_restore(self, store: SessionStore | None = None) -> SessionRestore:
        """Session restore helper bound to this client's intents."""
        return SessionRestore(
            store or DictSessionStore(),
            self.get_intent,
            ttl=self._config.session_ttl,
            clock=self._clock,
        )

    # ==================== Address pools ====================

    async def configure_organization(self, organization_id: str, **changes: Any) -> OrganizationSettings:
        """Update organization settings (crypto_enabled, cooldown_hours, ...)."""
        return await self._pool.configure(organization_id, **changes)

    async def add_address(self, organization_id: str, asset: str, address: str) -> list[str]:
        return await self._pool.add_address(organization_id, asset, address)

    async def remove_address(self, organization_id: str, asset: str, address: str) -> bool:
        return await self._pool.remove_address(organization_id, asset, address)

    async def usage_stats(self, organization_id: str, asset: str) -> list[AddressUsage]:
        """Last use and number of intents for every address in the pool."""
        code = get_asset(asset).code
        settings = await self._pool.get_settings(organization_id)
        stats = []
        for address in settings.addresses_for(code):
            usage = await self._pool.get_usage(organization_id, code, address)
            usage.times_used = await self._intents.count_for_address(organization_id, code, address)
            stats.append(usage)
        return stats

    # ==================== Lifecycle ====================

    async def close(self) -> None:
        """Stop all observation and release network and storage connections."""
        await self._watcher.close()
        for ledger in self._ledgers.values():
            await ledger.close()
        await self._price_source.close()
        await self._storage.close()

    async def __aenter__(self) -> PayWatch:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
