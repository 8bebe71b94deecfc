"""
Port Allocator.

Picks a listening port uniformly from [port_min, port_max], never returning
the excluded (current) port. The draw is closed-form: the excluded port is
removed from the candidate set up front, so a degenerate range fails
immediately instead of after a bounded number of redraws.
"""

import random
from typing import Optional

from .exceptions import NoDistinctPortError


class PortAllocator:
    """Stateless port selection with an injectable random source."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def candidate_count(self, port_min: int, port_max: int, exclude: int) -> int:
        """Number of ports pick() may return for these bounds."""
        if port_max < port_min:
            return 0
        size = port_max - port_min + 1
        if port_min <= exclude <= port_max:
            size -= 1
        return size

    def pick(self, port_min: int, port_max: int, exclude: int) -> int:
        """
        Draw a port from [port_min, port_max] other than exclude.

        Raises:
            NoDistinctPortError: If the range contains no other port
        """
        count = self.candidate_count(port_min, port_max, exclude)
        if count <= 0:
            raise NoDistinctPortError(
                message="No port in range differs from the current port",
                details={"port_min": port_min, "port_max": port_max, "exclude": exclude},
            )

        offset = self._rng.randrange(count)
        port = port_min + offset
        # Skip over the excluded port
        if port_min <= exclude <= port_max and port >= exclude:
            port += 1
        return port
