"""
tablequery - Query engine package.

- Query / QueryState: the engine and its pipeline states
- ClauseBuilder / ClauseSet: arguments to SQL fragments
- DateQuery: date range fragments
- QueryHooks: per-engine actions and filters
- CapabilityContext / Row: capability reduction and item shaping
"""

from tablequery.query.clauses import ClauseBuilder, ClauseSet
from tablequery.query.dates import DateQuery
from tablequery.query.engine import Query, QueryState
from tablequery.query.hooks import QueryHooks
from tablequery.query.shaping import CapabilityContext, Row

__all__ = [
    "CapabilityContext",
    "ClauseBuilder",
    "ClauseSet",
    "DateQuery",
    "Query",
    "QueryHooks",
    "QueryState",
    "Row",
]
