"""
Debt simplification.

Turns a list of pairwise debts into a short list of payments that clears
every net balance. Greedy largest-debtor/largest-creditor matching is an
approximation: finding the true minimum number of payments is NP-hard.

Matching runs separately inside each connected group of users (users
linked by at least one debt), so the result never has more payments than
there were distinct debtor/creditor pairs to begin with.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from app.core.exceptions import LedgerValidationError
from app.schemas.balance import DebtEdge, SimplifiedDebt


def aggregate_pairwise(debts: Iterable[DebtEdge]) -> List[DebtEdge]:
    """
    Net all debts between the same two users into at most one edge.

    A owes B 30 and B owes A 20 becomes A owes B 10. Pairs that cancel out
    exactly are dropped. ``source_id`` of the result is left empty.
    """
    totals: Dict[Tuple[str, str], int] = defaultdict(int)
    currency = None
    for debt in debts:
        currency = currency or debt.currency
        if debt.from_user_id == debt.to_user_id:
            continue
        # Key on the sorted pair; positive means first owes second
        a, b = sorted((debt.from_user_id, debt.to_user_id))
        sign = 1 if debt.from_user_id == a else -1
        totals[(a, b)] += sign * debt.amount_cents

    edges = []
    for (a, b), amount in totals.items():
        if amount > 0:
            edges.append(DebtEdge(from_user_id=a, to_user_id=b, amount_cents=amount, currency=currency))
        elif amount < 0:
            edges.append(DebtEdge(from_user_id=b, to_user_id=a, amount_cents=-amount, currency=currency))
    return edges


def net_balances(debts: Iterable[DebtEdge]) -> Dict[str, int]:
    """Signed balance per user: debtors negative, creditors positive."""
    net: Dict[str, int] = defaultdict(int)
    for debt in debts:
        net[debt.from_user_id] -= debt.amount_cents
        net[debt.to_user_id] += debt.amount_cents
    return dict(net)


def _components(edges: Iterable[DebtEdge]) -> List[List[str]]:
    parent: Dict[str, str] = {}

    def find(user: str) -> str:
        parent.setdefault(user, user)
        while parent[user] != user:
            parent[user] = parent[parent[user]]
            user = parent[user]
        return user

    for edge in edges:
        root_a, root_b = find(edge.from_user_id), find(edge.to_user_id)
        if root_a != root_b:
            parent[max(root_a, root_b)] = min(root_a, root_b)

    groups: Dict[str, List[str]] = defaultdict(list)
    for user in list(parent):
        groups[find(user)].append(user)
    return [sorted(members) for _, members in sorted(groups.items())]


def _match(net: Dict[str, int], users: List[str]) -> List[Tuple[str, str, int]]:
    debtors = [[u, -net[u]] for u in users if net.get(u, 0) < 0]
    creditors = [[u, net[u]] for u in users if net.get(u, 0) > 0]

    # Largest obligation first; user id breaks ties so output is stable
    debtors.sort(key=lambda x: (-x[1], x[0]))
    creditors.sort(key=lambda x: (-x[1], x[0]))

    payments = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor, creditor = debtors[i], creditors[j]
        amount = min(debtor[1], creditor[1])
        payments.append((debtor[0], creditor[0], amount))

        debtor[1] -= amount
        creditor[1] -= amount
        if debtor[1] == 0:
            i += 1
        if creditor[1] == 0:
            j += 1
    return payments


def simplify(debts: List[DebtEdge], currency: str = None, format_amount=None) -> List[SimplifiedDebt]:
    """
    Reduce pairwise debts to a minimal-ish set of payments in one currency.

    Post-conditions:
    - every emitted amount is > 0
    - each user's emitted outflow minus inflow equals their net deficit
    - len(result) <= number of distinct pairs with a non-zero net debt
    """
    if not debts:
        return []

    currencies = {d.currency for d in debts}
    if len(currencies) > 1:
        raise LedgerValidationError(
            f"Cannot simplify debts across currencies: {', '.join(sorted(currencies))}"
        )
    currency = currency or currencies.pop()

    pair_edges = aggregate_pairwise(debts)
    net = net_balances(pair_edges)

    sources: Dict[frozenset, List[str]] = defaultdict(list)
    for debt in debts:
        if debt.source_id and debt.source_id not in sources[frozenset((debt.from_user_id, debt.to_user_id))]:
            sources[frozenset((debt.from_user_id, debt.to_user_id))].append(debt.source_id)

    simplified = []
    for users in _components(pair_edges):
        for debtor, creditor, amount in _match(net, users):
            simplified.append(SimplifiedDebt(
                from_user_id=debtor,
                to_user_id=creditor,
                amount_cents=amount,
                currency=currency,
                display_amount=format_amount(amount, currency) if format_amount else "",
                original_debts=list(sources.get(frozenset((debtor, creditor)), [])),
            ))
    return simplified
