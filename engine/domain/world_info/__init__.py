# This module handles World Info activation

# +---------------------+
# |      Chat           |   (Recent messages, most recent last)
# |---------------------|
# | Scan window(s)      |
# | Recursion content   |
# +---------------------+
#           |
#           v
# +------------------------------+
# |   Activation passes          |   (KeyMatcher + EligibilityFilter,
# |------------------------------|    repeated by RecursionController)
# | Match keys                   |
# | Filter delay / characters    |
# | Feed content back to buffer  |
# +------------------------------+
#           |
#           v
# +------------------------------+
# |   Candidates                 |
# |------------------------------|
# | Group overrides              |   (PriorityResolver)
# | Token budget                 |   (BudgetAllocator, async tokenizer)
# +------------------------------+
#           |
#           v
# +------------------------------+
# |   Output slots               |   (OutputAssembler)
# |------------------------------|
# | before/after char            |
# | author's note / examples     |
# | chat depth buckets           |
# | named outlets                |
# +------------------------------+

from .processor import WorldInfoProcessor, process_world_info
from .events import WorldInfoEvents
from .exceptions import WorldInfoError, TokenizerError
from .tokenizer import CachedTokenCounter, TokenCounter

__all__ = [
    "WorldInfoProcessor",
    "process_world_info",
    "WorldInfoEvents",
    "WorldInfoError",
    "TokenizerError",
    "CachedTokenCounter",
    "TokenCounter",
]
