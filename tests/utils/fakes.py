"""In-memory stand-ins for Redis, the Postgres repositories and external services."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Iterable, Mapping, Optional, Sequence
from uuid import UUID, uuid4

from inkwell_providers import (
    GenerationFailed,
    ImageRequest,
    ImageResponse,
    MockProvider,
    ProviderRequest,
    ProviderResponse,
)
from inkwell_schemas import (
    BookType,
    CharacterReference,
    CostQuote,
    CoverDimensions,
    Job,
    JobGroup,
    JobSpec,
    JobStatus,
    JobType,
    NewOrder,
    Order,
    OrderStatus,
    PagePlanEntry,
    PaymentSession,
    PriceBreakdown,
    PrintJobRequest,
    PrintJobResult,
    Project,
    ProjectCounter,
    ProjectStatus,
    ShippingAddress,
    ShippingLevel,
    StoryParameters,
    Unit,
)
from inkwell_schemas.exceptions import NotFoundError, PermanentExternalError
from inkwell_store import JobStore, OrderClaim, OrderRepository, ProjectRepository

from services.orchestrator.app.lock import ProjectLock

OWNER = "owner-1"


class FakeRedis:
    """Implements the handful of commands :class:`ProjectLock` issues."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self.now = 0.0
        self._clock = clock or (lambda: self.now)
        self._values: dict[str, tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> bool:
        entry = self._values.get(key)
        if entry is None:
            return False
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._values[key]
            return False
        return True

    async def set(self, key: str, value: str, *, nx: bool = False, ex: Optional[int] = None) -> Optional[bool]:
        if nx and self._live(key):
            return None
        self._values[key] = (value, self._clock() + ex if ex else None)
        return True

    async def delete(self, key: str) -> int:
        existed = self._live(key)
        self._values.pop(key, None)
        return int(existed)

    async def exists(self, key: str) -> int:
        return int(self._live(key))

    async def expire(self, key: str, seconds: int) -> bool:
        if not self._live(key):
            return False
        value, _ = self._values[key]
        self._values[key] = (value, self._clock() + seconds)
        return True

    def ttl_of(self, key: str) -> Optional[float]:
        entry = self._values.get(key)
        return None if entry is None or entry[1] is None else entry[1] - self._clock()


def make_lock(ttl_seconds: int = 300) -> tuple[ProjectLock, FakeRedis]:
    redis = FakeRedis()
    return ProjectLock(redis, ttl_seconds=ttl_seconds), redis  # type: ignore[arg-type]


class InMemoryProjectRepository(ProjectRepository):
    def __init__(self, book_type: BookType) -> None:
        self.book_type = book_type
        self.projects: dict[UUID, Project] = {}
        self.units: dict[UUID, dict[int, Unit]] = {}
        self.transitions: list[tuple[UUID, ProjectStatus]] = []

    def add(self, project: Project) -> Project:
        self.projects[project.id] = project
        units = self.units.setdefault(project.id, {})
        if project.book_type is BookType.PICTURE_BOOK and not units:
            # A stored story plan always comes with one page row per planned page.
            for entry in project.story_plan:
                units[entry.page_number] = Unit(
                    project_id=project.id,
                    unit_index=entry.page_number,
                    content=entry.page_text,
                    plan=entry.model_dump(mode="json"),
                )
        return project

    def _require(self, project_id: UUID) -> Project:
        project = self.projects.get(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    def _update(self, project_id: UUID, **values: Any) -> Project:
        project = self._require(project_id).model_copy(update={**values, "last_modified": datetime.utcnow()})
        self.projects[project_id] = project
        return project

    async def get(self, project_id: UUID) -> Optional[Project]:
        return self.projects.get(project_id)

    async def transition(
        self,
        project_id: UUID,
        *,
        expected: Iterable[ProjectStatus],
        status: ProjectStatus,
        error: Optional[str] = None,
        progress: Optional[str] = None,
    ) -> bool:
        project = self.projects.get(project_id)
        if project is None or project.status not in set(expected):
            return False
        self._update(
            project_id,
            status=status,
            generation_error=error,
            generation_progress=progress if progress is not None else project.generation_progress,
        )
        self.transitions.append((project_id, status))
        return True

    async def set_progress(self, project_id: UUID, progress: str) -> None:
        self._update(project_id, generation_progress=progress)

    async def save_story_bible(self, project_id: UUID, bible: Mapping[str, Any]) -> None:
        self._update(project_id, story_bible=dict(bible))

    async def save_story_plan(self, project_id: UUID, plan: list[PagePlanEntry]) -> None:
        self._update(project_id, story_plan=list(plan), total_units=len(plan))
        self.units[project_id] = {
            entry.page_number: Unit(
                project_id=project_id,
                unit_index=entry.page_number,
                content=entry.page_text,
                plan=entry.model_dump(mode="json"),
            )
            for entry in plan
        }

    async def save_character_reference(self, project_id: UUID, reference: CharacterReference) -> None:
        self._update(project_id, character_reference=reference)

    async def save_prompt_details(
        self, project_id: UUID, details: StoryParameters, total_units: int
    ) -> None:
        self._update(project_id, prompt_details=details, total_units=total_units)

    async def upsert_unit(self, unit: Unit) -> Unit:
        self._require(unit.project_id)
        self.units.setdefault(unit.project_id, {})[unit.unit_index] = unit
        return unit

    async def attach_image(self, project_id: UUID, unit_index: int, image_url: str) -> Unit:
        unit = self.units.get(project_id, {}).get(unit_index)
        if unit is None:
            raise NotFoundError(f"Project {project_id} has no unit {unit_index}")
        unit = unit.model_copy(update={"image_url": image_url})
        self.units[project_id][unit_index] = unit
        return unit

    async def list_units(self, project_id: UUID) -> list[Unit]:
        units = self.units.get(project_id, {})
        return [units[index] for index in sorted(units)]

    async def increment_counter(self, project_id: UUID, counter: ProjectCounter, delta: int = 1) -> int:
        project = self._require(project_id)
        value = max(getattr(project, counter.value) + delta, 0)
        self._update(project_id, **{counter.value: value})
        return value

    async def set_privacy(self, project_id: UUID, owner_id: str, is_public: bool) -> Project:
        project = self.projects.get(project_id)
        if project is None or project.owner_id != owner_id:
            raise NotFoundError(f"Project {project_id} not found")
        return self._update(project_id, is_public=is_public)


def make_repositories() -> dict[BookType, InMemoryProjectRepository]:
    return {book_type: InMemoryProjectRepository(book_type) for book_type in BookType}


class InMemoryJobStore(JobStore):
    """FIFO queue with the claim, retry and group semantics of the Postgres store."""

    def __init__(self) -> None:
        self.jobs: dict[UUID, Job] = {}
        self.groups: dict[UUID, JobGroup] = {}
        self.retry_delays: list[float] = []
        self.fail_enqueue = False

    def _insert(self, spec: JobSpec) -> Job:
        job = Job(id=uuid4(), **spec.model_dump())
        self.jobs[job.id] = job
        return job

    async def enqueue(self, spec: JobSpec) -> Job:
        if self.fail_enqueue:
            raise RuntimeError("queue unavailable")
        return self._insert(spec)

    async def enqueue_group(self, specs: Sequence[JobSpec]) -> JobGroup:
        if self.fail_enqueue:
            raise RuntimeError("queue unavailable")
        first = specs[0]
        group = JobGroup(id=uuid4(), project_id=first.project_id, book_type=first.book_type, total=len(specs))
        self.groups[group.id] = group
        for spec in specs:
            self._insert(spec.model_copy(update={"group_id": group.id}))
        return group

    async def claim(self, job_type: JobType, *, max_running: int) -> Optional[Job]:
        running = sum(
            1 for job in self.jobs.values() if job.job_type is job_type and job.status is JobStatus.RUNNING
        )
        if running >= max_running:
            return None
        for job in self.jobs.values():
            if job.job_type is job_type and job.status is JobStatus.QUEUED:
                claimed = job.model_copy(update={"status": JobStatus.RUNNING, "attempts": job.attempts + 1})
                self.jobs[job.id] = claimed
                return claimed
        return None

    async def complete(self, job_id: UUID) -> None:
        self.jobs[job_id] = self.jobs[job_id].model_copy(update={"status": JobStatus.SUCCEEDED})

    async def retry_later(self, job_id: UUID, error: str, delay_seconds: float) -> None:
        self.retry_delays.append(delay_seconds)
        self.jobs[job_id] = self.jobs[job_id].model_copy(update={"status": JobStatus.QUEUED, "error": error})

    async def fail(self, job_id: UUID, error: str) -> None:
        self.jobs[job_id] = self.jobs[job_id].model_copy(update={"status": JobStatus.FAILED, "error": error})

    async def record_child_outcome(self, group_id: UUID, *, succeeded: bool) -> JobGroup:
        group = self.groups[group_id]
        field = "succeeded" if succeeded else "failed"
        group = group.model_copy(update={field: getattr(group, field) + 1})
        if group.settled and group.final_status is None:
            final = ProjectStatus.COMPLETE if group.failed == 0 else ProjectStatus.ERROR
            group = group.model_copy(update={"final_status": final})
        self.groups[group_id] = group
        return group

    def queued(self, job_type: Optional[JobType] = None) -> list[Job]:
        return [
            job
            for job in self.jobs.values()
            if job.status is JobStatus.QUEUED and (job_type is None or job.job_type is job_type)
        ]

    def with_status(self, status: JobStatus) -> list[Job]:
        return [job for job in self.jobs.values() if job.status is status]


class ScriptedProvider(MockProvider):
    """Mock provider whose steps can be made to fail on demand."""

    def __init__(self) -> None:
        super().__init__()
        self.failures: dict[str, list[BaseException]] = {}
        self.image_failures: dict[int, list[BaseException]] = {}
        self.requests: list[ProviderRequest] = []
        self.image_requests: list[ImageRequest] = []

    def fail_step(self, step: str, *errors: BaseException) -> None:
        self.failures.setdefault(step, []).extend(errors)

    def fail_page(self, page_number: int, *errors: BaseException) -> None:
        self.image_failures.setdefault(page_number, []).extend(errors)

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        self.requests.append(request)
        pending = self.failures.get(str(request.metadata.get("step")))
        if pending:
            raise pending.pop(0)
        return await super().generate(request)

    async def generate_image(self, request: ImageRequest) -> ImageResponse:
        self.image_requests.append(request)
        pending = self.image_failures.get(int(request.metadata.get("page_number", 0)))
        if pending:
            raise pending.pop(0)
        return await super().generate_image(request)


def transport_error(message: str = "upstream timeout") -> GenerationFailed:
    return GenerationFailed(message, reason="transport")


def story_plan(page_count: int = 20) -> list[PagePlanEntry]:
    return [
        PagePlanEntry(
            page_number=index,
            page_text=f"Page {index} text.",
            illustration_prompt=f"Scene for page {index}.",
        )
        for index in range(1, page_count + 1)
    ]


def text_book(status: ProjectStatus = ProjectStatus.STORY_READY, total_units: int = 3, **extra: Any) -> Project:
    values: dict[str, Any] = {
        "id": uuid4(),
        "owner_id": OWNER,
        "book_type": BookType.TEXT_BOOK,
        "title": "The Lantern Keeper",
        "status": status,
        "prompt_details": StoryParameters(genre="Fantasy", tone="Warm"),
        "total_units": total_units,
    }
    values.update(extra)
    return Project(**values)


def picture_book(status: ProjectStatus = ProjectStatus.STORY_READY, **extra: Any) -> Project:
    plan = story_plan()
    values: dict[str, Any] = {
        "id": uuid4(),
        "owner_id": OWNER,
        "book_type": BookType.PICTURE_BOOK,
        "title": "Pip and the Moon",
        "status": status,
        "story_plan": plan,
        "total_units": len(plan),
        "character_reference": CharacterReference(name="Pip", description="A small grey mouse"),
        "prompt_details": StoryParameters(genre="Picture book", art_style="Watercolour"),
    }
    values.update(extra)
    return Project(**values)


def shipping_address(**extra: Any) -> ShippingAddress:
    values: dict[str, Any] = {
        "name": "Ada Reader",
        "street1": "1 Main St",
        "city": "Springfield",
        "state_code": "IL",
        "postcode": "62701",
        "country_code": "US",
        "email": "ada@example.com",
    }
    values.update(extra)
    return ShippingAddress(**values)


class _InMemoryOrderClaim(OrderClaim):
    def __init__(self, repository: "InMemoryOrderRepository", order: Order) -> None:
        self._repository = repository
        self.order = order

    async def mark_processing(
        self, vendor_job_id: str, vendor_job_status: str, customer_email: Optional[str]
    ) -> None:
        self._repository._update(
            self.order.id,
            status=OrderStatus.PROCESSING,
            vendor_job_id=vendor_job_id,
            vendor_job_status=vendor_job_status,
            customer_email=customer_email or self.order.customer_email,
            error_message=None,
        )

    async def mark_fulfillment_failed(self, message: str, customer_email: Optional[str] = None) -> None:
        self._repository._update(
            self.order.id,
            status=OrderStatus.FULFILLMENT_FAILED,
            error_message=message,
            customer_email=customer_email or self.order.customer_email,
        )


class InMemoryOrderRepository(OrderRepository):
    def __init__(self) -> None:
        self.orders: dict[UUID, Order] = {}
        self.discarded: list[UUID] = []
        self.fail_attach = False

    def _update(self, order_id: UUID, **values: Any) -> Order:
        order = self.orders[order_id].model_copy(update={**values, "updated_at": datetime.utcnow()})
        self.orders[order_id] = order
        return order

    def add(self, order: Order) -> Order:
        self.orders[order.id] = order
        return order

    async def create_pending(self, new_order: NewOrder) -> Order:
        order = Order(id=uuid4(), status=OrderStatus.PENDING, **new_order.model_dump())
        self.orders[order.id] = order
        return order

    async def attach_session(self, order_id: UUID, session_id: str) -> None:
        if self.fail_attach:
            raise RuntimeError("database unavailable")
        self._update(order_id, payment_session_id=session_id)

    async def discard_pending(self, order_id: UUID) -> bool:
        order = self.orders.get(order_id)
        if order is None or order.status is not OrderStatus.PENDING or order.payment_session_id:
            return False
        del self.orders[order_id]
        self.discarded.append(order_id)
        return True

    @asynccontextmanager
    async def claim_pending(self, order_id: UUID) -> AsyncIterator[Optional[OrderClaim]]:
        order = self.orders.get(order_id)
        if order is None or order.status is not OrderStatus.PENDING:
            yield None
            return
        yield _InMemoryOrderClaim(self, order)

    async def get(self, order_id: UUID) -> Optional[Order]:
        return self.orders.get(order_id)

    async def mark_failed_by_session(self, session_id: str, message: str) -> Optional[Order]:
        for order in self.orders.values():
            if order.payment_session_id == session_id and order.status is OrderStatus.PENDING:
                return self._update(order.id, status=OrderStatus.FAILED, error_message=message)
        return None

    async def record_vendor_status(
        self, order_id: UUID, vendor_job_status: str, status: Optional[OrderStatus] = None
    ) -> Optional[Order]:
        if order_id not in self.orders:
            return None
        values: dict[str, Any] = {"vendor_job_status": vendor_job_status}
        if status is not None:
            values["status"] = status
        return self._update(order_id, **values)


def pending_order(**extra: Any) -> Order:
    values: dict[str, Any] = {
        "id": uuid4(),
        "project_id": uuid4(),
        "owner_id": OWNER,
        "book_type": BookType.PICTURE_BOOK,
        "price": PriceBreakdown(print_cost="20.00", margin="10.00", total="30.00"),
        "interior_url": "http://localhost:9300/artifacts/orders/x/interior.pdf",
        "cover_url": "http://localhost:9300/artifacts/orders/x/cover.pdf",
        "actual_page_count": 24,
        "product_sku": "1169X0827FCPRECW080CW444MXX",
        "shipping_level": ShippingLevel.MAIL,
    }
    values.update(extra)
    return Order(**values)


class FakeVendor:
    """Records calls made to the print vendor and replays scripted answers."""

    def __init__(self) -> None:
        self.quote: Optional[CostQuote] = CostQuote(total_cost_incl_tax="20.00", currency="USD")
        self.quote_errors: list[BaseException] = []
        self.dimensions: Optional[CoverDimensions] = None
        self.print_job_error: Optional[BaseException] = None
        self.print_job_errors: list[BaseException] = []
        self.print_job_status = "CREATED"
        self.quote_calls: list[dict[str, Any]] = []
        self.submitted: list[PrintJobRequest] = []

    async def quote_cost(self, **kwargs: Any) -> CostQuote:
        self.quote_calls.append(kwargs)
        if self.quote_errors:
            raise self.quote_errors.pop(0)
        if self.quote is None:
            raise PermanentExternalError("Vendor quote is missing a line item cost")
        return self.quote

    async def cover_dimensions(self, *, sku: str, page_count: int) -> CoverDimensions:
        if self.dimensions is None:
            raise PermanentExternalError("cover dimensions unavailable")
        return self.dimensions

    async def create_print_job(self, request: PrintJobRequest) -> PrintJobResult:
        self.submitted.append(request)
        if self.print_job_errors:
            raise self.print_job_errors.pop(0)
        if self.print_job_error is not None:
            raise self.print_job_error
        return PrintJobResult(job_id=f"job-{len(self.submitted)}", status="CREATED")

    async def get_print_job(self, job_id: str) -> PrintJobResult:
        return PrintJobResult(job_id=job_id, status=self.print_job_status)


class FakePayments:
    """Accepts the signature ``valid`` and treats the payload as the event JSON."""

    VALID_SIGNATURE = "valid"

    def __init__(self) -> None:
        self.sessions: list[dict[str, Any]] = []
        self.error: Optional[BaseException] = None
        self.errors: list[BaseException] = []
        self.expired: list[str] = []

    async def create_session(self, **kwargs: Any) -> PaymentSession:
        self.sessions.append(kwargs)
        if self.errors:
            raise self.errors.pop(0)
        if self.error is not None:
            raise self.error
        return PaymentSession(
            session_id=f"cs_test_{len(self.sessions)}",
            redirect_url=f"https://pay.example/cs_test_{len(self.sessions)}",
        )

    async def expire_session(self, session_id: str) -> None:
        self.expired.append(session_id)

    def parse_event(self, payload: bytes, signature: Optional[str]) -> Any:
        if signature != self.VALID_SIGNATURE:
            raise PermanentExternalError("Invalid payment webhook signature")
        return json.loads(payload)


def checkout_completed_event(order_id: Any, **session: Any) -> bytes:
    data: dict[str, Any] = {
        "id": "cs_test_1",
        "metadata": {"orderId": str(order_id) if order_id is not None else None},
        "customer_details": {"email": "buyer@example.com"},
        "shipping_details": {
            "name": "Ada Reader",
            "address": {
                "line1": "1 Main St",
                "city": "Springfield",
                "state": "IL",
                "postal_code": "62701",
                "country": "us",
            },
        },
    }
    data.update(session)
    return json.dumps(
        {"id": "evt_1", "type": "checkout.session.completed", "data": {"object": data}}
    ).encode("utf-8")
