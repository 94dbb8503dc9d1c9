"""Type aliases shared by the tracing and logging layers.

Carriers are plain string maps so they can be logged and carried across
propagation boundaries.
"""

from collections.abc import MutableMapping
from typing import TypeAlias

# Header carrier used by propagators (HTTP headers, message attributes)
Carrier: TypeAlias = MutableMapping[str, str]

# Value accepted as a span tag
TagValue: TypeAlias = str | int | float | bool
