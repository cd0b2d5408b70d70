"""Tests for translating temporal invariants into guards and actions."""

from __future__ import annotations

from workload_efsm.guards_actions import (
    guards_are_needed,
    install_guards_and_actions,
    path_exists,
)
from workload_efsm.models import (
    Invariant,
    InvariantKind,
    ParameterType,
    SessionLayerEFSM,
)


def _efsm(edges: list[tuple[str, str | None]], initial: str | None = None) -> SessionLayerEFSM:
    efsm = SessionLayerEFSM()
    for source, target in edges:
        src = efsm.add_state(source)
        dst = efsm.exit_state if target is None else efsm.add_state(target)
        efsm.add_transition(src, dst)
    if initial is not None:
        efsm.add_state(initial, initial=True)
    return efsm


def _always_precedes(first: str, second: str) -> Invariant:
    return Invariant(kind=InvariantKind.ALWAYS_PRECEDES, first=first, second=second)


def _never_followed(first: str, second: str) -> Invariant:
    return Invariant(kind=InvariantKind.NEVER_FOLLOWED, first=first, second=second)


def _counting(first: str, second: str, minimum: int) -> Invariant:
    return Invariant(
        kind=InvariantKind.COUNTING, first=first, second=second, minimum_difference=minimum,
    )


LOGIN_CHECKOUT = [
    ("A", "Login"),
    ("B", "Login"),
    ("C", "Login"),
    ("A", "Checkout"),
    ("B", "Checkout"),
    ("Login", "A"),
    ("Checkout", None),
]


# ═══════════════════════════════════════════════════════════════════════════
# Always-precedes
# ═══════════════════════════════════════════════════════════════════════════


class TestAlwaysPrecedes:
    def test_login_before_checkout(self) -> None:
        efsm = _efsm(LOGIN_CHECKOUT)

        report = install_guards_and_actions(efsm, [_always_precedes("Login", "Checkout")])

        assert list(efsm.guard_action_parameters) == ["Login"]
        parameter = efsm.guard_action_parameters["Login"]
        assert parameter.parameter_type is ParameterType.BOOLEAN
        assert parameter.source_name == "Login"
        assert parameter.target_name is None

        for t in efsm.transitions_into("Login"):
            assert [a.parameter for a in t.actions] == [parameter]
            assert t.guards == []
        for t in efsm.transitions_into("Checkout"):
            assert len(t.guards) == 1
            assert t.guards[0].parameter is parameter
            assert t.guards[0].negate is True
            assert t.guards[0].diff_minimum is None

        assert report.installed == 1
        assert report.actions_added == 3
        assert report.guards_added == 2

    def test_actions_are_not_duplicated(self) -> None:
        efsm = _efsm(LOGIN_CHECKOUT)
        invariant = _always_precedes("Login", "Checkout")

        install_guards_and_actions(efsm, [invariant])
        report = install_guards_and_actions(efsm, [invariant])

        assert report.actions_added == 0
        assert len(efsm.guard_action_parameters) == 1
        for t in efsm.transitions():
            names = [a.parameter.name for a in t.actions]
            assert len(names) == len(set(names))

    def test_parameter_shared_between_invariants(self) -> None:
        efsm = _efsm(LOGIN_CHECKOUT + [("C", "Pay"), ("A", "Pay")])

        install_guards_and_actions(
            efsm, [_always_precedes("Login", "Checkout"), _always_precedes("Login", "Pay")],
        )

        assert list(efsm.guard_action_parameters) == ["Login"]
        parameter = efsm.guard_action_parameters["Login"]
        for t in efsm.transitions_into("Pay"):
            assert t.guards[0].parameter is parameter
        for t in efsm.transitions_into("Login"):
            assert len(t.actions) == 1

    def test_existing_guards_are_kept(self) -> None:
        efsm = _efsm(LOGIN_CHECKOUT + [("Cart", "Checkout"), ("Cart", "Login")])

        install_guards_and_actions(
            efsm,
            [_always_precedes("Login", "Checkout"), _always_precedes("Cart", "Checkout")],
        )

        for t in efsm.transitions_into("Checkout"):
            assert [g.parameter.name for g in t.guards] == ["Login", "Cart"]


# ═══════════════════════════════════════════════════════════════════════════
# Skipping & necessity
# ═══════════════════════════════════════════════════════════════════════════


class TestNecessity:
    def test_no_invariants_is_noop(self) -> None:
        efsm = _efsm(LOGIN_CHECKOUT)

        report = install_guards_and_actions(efsm, [])

        assert report.invariants == 0
        assert efsm.guard_action_parameters == {}
        assert all(not t.guards and not t.actions for t in efsm.transitions())

    def test_unresolved_first_service_skipped(self) -> None:
        efsm = _efsm(LOGIN_CHECKOUT)

        report = install_guards_and_actions(efsm, [_always_precedes("Admin", "Checkout")])

        assert report.skipped_unresolved == 1
        assert efsm.guard_action_parameters == {}

    def test_no_guard_transitions_skipped(self) -> None:
        efsm = _efsm([("Home", "Login"), ("Login", None)], initial="Home")

        report = install_guards_and_actions(efsm, [_always_precedes("Login", "Home")])

        assert report.skipped_unneeded == 1
        assert efsm.guard_action_parameters == {}

    def test_single_direct_predecessor_skipped(self) -> None:
        efsm = _efsm([("Home", "Login"), ("Login", "Checkout"), ("Home", "Browse")])

        report = install_guards_and_actions(efsm, [_always_precedes("Login", "Checkout")])

        assert report.skipped_unneeded == 1
        assert efsm.guard_action_parameters == {}

    def test_single_indirect_predecessor_needs_guard(self) -> None:
        efsm = _efsm([("Home", "Login"), ("Home", "Browse"), ("Browse", "Checkout")])

        report = install_guards_and_actions(efsm, [_always_precedes("Login", "Checkout")])

        assert report.installed == 1
        assert len(efsm.transition_between("Browse", "Checkout").guards) == 1

    def test_counting_with_zero_difference_skipped(self) -> None:
        efsm = _efsm([("Home", "Browse"), ("Browse", "Cart")])

        report = install_guards_and_actions(efsm, [_counting("Browse", "Cart", 0)])

        assert report.skipped_unneeded == 1
        assert efsm.guard_action_parameters == {}

    def test_guards_are_needed_helper(self) -> None:
        efsm = _efsm([("Home", "Browse"), ("Browse", "Cart")])
        browse = efsm.state_for_service("Browse")
        into_cart = efsm.transitions_into("Cart")

        assert guards_are_needed([], browse, _counting("Browse", "Cart", 3)) is False
        assert guards_are_needed(into_cart, browse, _always_precedes("Browse", "Cart")) is False
        assert guards_are_needed(into_cart, browse, _counting("Browse", "Cart", 0)) is False
        assert guards_are_needed(into_cart, browse, _counting("Browse", "Cart", 2)) is True


# ═══════════════════════════════════════════════════════════════════════════
# Counting
# ═══════════════════════════════════════════════════════════════════════════


class TestCounting:
    def test_counter_parameter_and_annotations(self) -> None:
        efsm = _efsm([("Home", "Browse"), ("Cart", "Browse"), ("Browse", "Cart")])

        report = install_guards_and_actions(efsm, [_counting("Browse", "Cart", 1)])

        assert report.installed == 1
        parameter = efsm.guard_action_parameters["BrowseCart"]
        assert parameter.parameter_type is ParameterType.INTEGER
        assert parameter.source_name == "Browse"
        assert parameter.target_name == "Cart"

        for t in efsm.transitions_into("Browse"):
            assert [a.parameter for a in t.actions] == [parameter]
            assert t.guards == []

        (into_cart,) = efsm.transitions_into("Cart")
        assert [a.parameter for a in into_cart.actions] == [parameter]
        assert len(into_cart.guards) == 1
        assert into_cart.guards[0].negate is True
        assert into_cart.guards[0].diff_minimum == 1

    def test_counting_subsumes_always_precedes(self) -> None:
        efsm = _efsm([("Home", "Browse"), ("Home", "Cart"), ("Browse", "Cart")])

        report = install_guards_and_actions(
            efsm, [_always_precedes("Browse", "Cart"), _counting("Browse", "Cart", 0)],
        )

        assert report.invariants == 1
        assert list(efsm.guard_action_parameters) == ["BrowseCart"]

    def test_always_precedes_kept_for_other_pair(self) -> None:
        efsm = _efsm([("Home", "Browse"), ("Home", "Cart"), ("Browse", "Cart")])

        report = install_guards_and_actions(
            efsm, [_always_precedes("Cart", "Browse"), _counting("Browse", "Cart", 0)],
        )

        assert report.invariants == 2


# ═══════════════════════════════════════════════════════════════════════════
# Never-followed & reachability
# ═══════════════════════════════════════════════════════════════════════════


class TestNeverFollowed:
    def test_disabled_by_default(self) -> None:
        efsm = _efsm([("A", "B"), ("B", "C"), ("X", "C")])

        report = install_guards_and_actions(efsm, [_never_followed("A", "C")])

        assert report.skipped_disabled == 1
        assert efsm.guard_action_parameters == {}

    def test_installed_when_path_exists(self) -> None:
        efsm = _efsm([("X", "A"), ("A", "B"), ("B", "C")])

        report = install_guards_and_actions(
            efsm, [_never_followed("A", "C")], enable_never_followed=True,
        )

        assert report.installed == 1
        parameter = efsm.guard_action_parameters["A"]
        assert parameter.parameter_type is ParameterType.BOOLEAN
        assert [a.parameter for a in efsm.transition_between("X", "A").actions] == [parameter]
        guard = efsm.transition_between("B", "C").guards[0]
        assert guard.parameter is parameter
        assert guard.negate is False

    def test_no_path_installs_nothing(self) -> None:
        efsm = _efsm([("A", "B"), ("B", "C"), ("X", "A"), ("X", "B")])

        report = install_guards_and_actions(
            efsm, [_never_followed("C", "A")], enable_never_followed=True,
        )

        assert report.skipped_unreachable == 1
        assert efsm.guard_action_parameters == {}
        assert all(not t.guards and not t.actions for t in efsm.transitions())


class TestPathExists:
    def test_reachable_through_cycle(self) -> None:
        efsm = _efsm([("A", "B"), ("B", "A"), ("B", "C")])
        a, c = efsm.state_for_service("A"), efsm.state_for_service("C")
        assert path_exists(efsm, a, c) is True
        assert path_exists(efsm, c, a) is False

    def test_self_reachability_requires_cycle(self) -> None:
        efsm = _efsm([("A", "B"), ("B", "A"), ("C", "D")])
        assert path_exists(efsm, efsm.state_for_service("A"), efsm.state_for_service("A")) is True
        assert path_exists(efsm, efsm.state_for_service("C"), efsm.state_for_service("C")) is False

    def test_cycle_without_target_terminates(self) -> None:
        efsm = _efsm([("A", "B"), ("B", "C"), ("C", "A"), ("D", None)])
        assert path_exists(efsm, efsm.state_for_service("A"), efsm.state_for_service("D")) is False

    def test_exit_state_not_traversed(self) -> None:
        efsm = _efsm([("A", None), ("B", "C")])
        assert path_exists(efsm, efsm.state_for_service("A"), efsm.state_for_service("C")) is False

    def test_long_chain(self) -> None:
        edges = [(f"S{i}", f"S{i + 1}") for i in range(2000)]
        efsm = _efsm(edges)
        assert path_exists(
            efsm, efsm.state_for_service("S0"), efsm.state_for_service("S2000"),
        ) is True


class TestParameterRegistry:
    def test_same_name_returns_same_instance(self) -> None:
        efsm = SessionLayerEFSM()

        first = efsm.get_or_create_parameter("Login", ParameterType.BOOLEAN, "Login")
        again = efsm.get_or_create_parameter("Login", ParameterType.BOOLEAN, "Login")

        assert again is first
        assert efsm.guard_action_parameters == {"Login": first}

    def test_later_request_does_not_change_existing(self) -> None:
        efsm = SessionLayerEFSM()
        first = efsm.get_or_create_parameter("BrowseCart", ParameterType.INTEGER, "Browse", "Cart")

        again = efsm.get_or_create_parameter("BrowseCart", ParameterType.BOOLEAN, "Other")

        assert again is first
        assert again.parameter_type is ParameterType.INTEGER
        assert again.source_name == "Browse"
        assert again.target_name == "Cart"

    def test_distinct_names_distinct_parameters(self) -> None:
        efsm = SessionLayerEFSM()
        login = efsm.get_or_create_parameter("Login", ParameterType.BOOLEAN, "Login")
        counter = efsm.get_or_create_parameter("LoginCheckout", ParameterType.INTEGER, "Login", "Checkout")

        assert login is not counter
        assert list(efsm.guard_action_parameters) == ["Login", "LoginCheckout"]
