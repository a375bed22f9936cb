"""Shared test helpers: in-memory fakes for every collaborator."""

from typing import Any

from repairflow.backends.base import (
    CatalogBrowser,
    CatalogScope,
    Categorizer,
    CategoryOption,
    EstimateWorkspace,
    PartsMarketplace,
    ShopPlatform,
    VehicleStatus,
)
from repairflow.sourcing.selector import Candidate


class RecordingSleep:
    """Awaitable sleep replacement that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _maybe_raise(value: Any) -> Any:
    if isinstance(value, BaseException):
        raise value
    return value


class FakeCatalog(CatalogBrowser):
    """Labor catalog whose tree is a list of option lists, one per level.

    Selecting a tree option descends one level. With ``echo_parent`` each
    level also shows the previous level's options, the way the real catalog
    keeps ancestors visible.

    ``tree_errors`` maps a depth to an error raised once when that level is
    listed.
    """

    def __init__(
        self,
        levels: list[list[str]] | None = None,
        procedures: list[str] | None = None,
        qualifiers: list[str] | None = None,
        add_ons: list[str] | None = None,
        hours: Any = 1.2,
        confirmable: bool = True,
        confirm_ok: bool = True,
        unclickable: tuple[str, ...] = (),
        echo_parent: bool = False,
        list_error: BaseException | None = None,
        tree_errors: dict[int, BaseException] | None = None,
    ) -> None:
        self.levels = levels or []
        self.procedures = procedures or []
        self.qualifiers = qualifiers or []
        self.add_ons = add_ons or []
        self.hours = hours
        self.confirmable = confirmable
        self.confirm_ok = confirm_ok
        self.unclickable = set(unclickable)
        self.echo_parent = echo_parent
        self.list_error = list_error
        self.tree_errors = dict(tree_errors or {})
        self.depth = 0
        self.selected: list[tuple[CatalogScope, str]] = []
        self.confirm_calls = 0
        self.reads: list[CatalogScope] = []

    async def list_options(self, scope: CatalogScope) -> list[CategoryOption]:
        if self.list_error is not None:
            raise self.list_error
        if scope is CatalogScope.TREE and self.depth in self.tree_errors:
            raise self.tree_errors.pop(self.depth)
        if scope is CatalogScope.TREE:
            labels: list[str] = []
            if self.depth < len(self.levels):
                labels = list(self.levels[self.depth])
                if self.echo_parent and self.depth > 0:
                    labels = list(self.levels[self.depth - 1]) + labels
            return [CategoryOption(label, self.depth + 1) for label in labels]
        source = {
            CatalogScope.PROCEDURE: self.procedures,
            CatalogScope.QUALIFIER: self.qualifiers,
            CatalogScope.ADD_ON: self.add_ons,
        }.get(scope, [])
        return [CategoryOption(label, 0) for label in source]

    async def select(self, scope: CatalogScope, label: str) -> bool:
        if label in self.unclickable:
            return False
        self.selected.append((scope, label))
        if scope is CatalogScope.TREE:
            self.depth += 1
        return True

    async def read_value(self, scope: CatalogScope) -> Any:
        self.reads.append(scope)
        return self.hours

    async def can_confirm(self) -> bool:
        return self.confirmable

    async def confirm(self) -> bool:
        self.confirm_calls += 1
        return self.confirm_ok

    def selected_in(self, scope: CatalogScope) -> list[str]:
        return [label for s, label in self.selected if s is scope]


class ScriptedCategorizer(Categorizer):
    """Returns scripted answers in order; None once the script runs out.

    A script entry that is an exception instance is raised instead.
    """

    def __init__(self, answers: list[Any] | None = None) -> None:
        self.answers = list(answers or [])
        self.prompts: list[str] = []

    async def ask(self, prompt: str) -> str | None:
        self.prompts.append(prompt)
        if not self.answers:
            return None
        return _maybe_raise(self.answers.pop(0))


class FakeMarketplace(PartsMarketplace):
    """Marketplace with canned search results per term."""

    def __init__(
        self,
        results: dict[str, Any] | None = None,
        open_result: Any = True,
        add_ok: bool = True,
        submit_result: Any = True,
    ) -> None:
        self.results = results or {}
        self.open_result = open_result
        self.add_ok = add_ok
        self.submit_result = submit_result
        self.searches: list[str] = []
        self.cart: list[Candidate] = []
        self.submitted = False
        self.closed = False

    async def open(self) -> bool:
        return bool(_maybe_raise(self.open_result))

    async def search(self, term: str) -> list[Candidate]:
        self.searches.append(term)
        return list(_maybe_raise(self.results.get(term, [])))

    async def add_to_cart(self, candidate: Candidate) -> bool:
        if self.add_ok:
            self.cart.append(candidate)
        return self.add_ok

    async def submit_cart(self) -> bool:
        self.submitted = True
        return bool(_maybe_raise(self.submit_result))

    async def close(self) -> None:
        self.closed = True


class FakeShop(ShopPlatform):
    """Shop platform recording every call.

    ``authenticate_error`` (and the other ``*_error`` arguments) are raised
    on every call when set.
    """

    def __init__(
        self,
        existing_customer: dict[str, Any] | None = None,
        authenticate_error: BaseException | None = None,
        create_customer_error: BaseException | None = None,
        create_vehicle_error: BaseException | None = None,
        export_result: Any = b"%PDF-1.4 estimate",
        estimate: dict[str, Any] | None = None,
    ) -> None:
        self.existing_customer = existing_customer
        self.authenticate_error = authenticate_error
        self.create_customer_error = create_customer_error
        self.create_vehicle_error = create_vehicle_error
        self.export_result = export_result
        self.estimate = estimate or {"_id": "est-1", "code": "RO-1001"}
        self.calls: list[tuple[str, Any]] = []

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def authenticate(self, session: Any) -> None:
        self.calls.append(("authenticate", session))
        if self.authenticate_error is not None:
            raise self.authenticate_error

    async def search_customer(self, query: str) -> dict[str, Any] | None:
        self.calls.append(("search_customer", query))
        return self.existing_customer

    async def create_customer(
        self,
        first_name: str,
        last_name: str,
        phone: str | None = None,
        email: str | None = None,
    ) -> dict[str, Any]:
        self.calls.append(("create_customer", (first_name, last_name, phone, email)))
        if self.create_customer_error is not None:
            raise self.create_customer_error
        return {"_id": "cust-new", "firstName": first_name, "lastName": last_name}

    async def create_vehicle(self, customer_id: str, vehicle: Any) -> dict[str, Any]:
        self.calls.append(("create_vehicle", (customer_id, vehicle)))
        if self.create_vehicle_error is not None:
            raise self.create_vehicle_error
        return {"vehicleId": "veh-new"}

    async def create_estimate(
        self, customer_id: str, vehicle_id: str | None = None
    ) -> dict[str, Any]:
        self.calls.append(("create_estimate", (customer_id, vehicle_id)))
        return dict(self.estimate)

    async def get_estimate(self, estimate_id: str) -> dict[str, Any] | None:
        self.calls.append(("get_estimate", estimate_id))
        return dict(self.estimate)

    async def export_document(self, estimate_id: str) -> bytes:
        self.calls.append(("export_document", estimate_id))
        return _maybe_raise(self.export_result)


class FakeWorkspace(EstimateWorkspace):
    """Remote session with scripted vehicle status, link count and totals."""

    def __init__(
        self,
        vehicle_status: VehicleStatus | None = None,
        linked: int = 1,
        totals: Any = None,
        save_error: BaseException | None = None,
        release_error: BaseException | None = None,
    ) -> None:
        self.status = vehicle_status or VehicleStatus(visible=True, confirmed=True)
        self.linked = linked
        self.totals = totals
        self.save_error = save_error
        self.release_error = release_error
        self.attached_with: Any = None
        self.opened: list[str] = []
        self.linked_parts: list[Candidate] = []
        self.saved = False
        self.released = 0

    async def attach(self, session: Any) -> None:
        self.attached_with = session

    async def open_estimate(self, estimate_id: str) -> None:
        self.opened.append(estimate_id)

    async def vehicle_status(self) -> VehicleStatus:
        return self.status

    async def link_parts(self, parts: list[Candidate]) -> int:
        self.linked_parts = list(parts)
        return self.linked

    async def save(self) -> None:
        if self.save_error is not None:
            raise self.save_error
        self.saved = True

    async def read_totals(self) -> dict[str, float] | None:
        return _maybe_raise(self.totals)

    async def release(self) -> None:
        self.released += 1
        if self.release_error is not None:
            raise self.release_error
