"""JoinGate — barrier guarding a node with several incoming branches."""

import asyncio


class JoinGate:
    """Let exactly one of ``required`` arriving branches through.

    Each branch calls ``arrive()``. Every arrival but the last gets ``False``
    and should park on ``wait()``; the last arrival gets ``True``, releases
    the parked branches and is the only one that executes the guarded node.

    ``abandon()`` wakes parked branches without anyone getting through; the
    scheduler uses it when the missing branches can no longer arrive.
    """

    def __init__(self, node_id: str, required: int) -> None:
        self.node_id = node_id
        self.required = required
        self.arrived = 0
        self.abandoned = False
        self._released = asyncio.Event()

    @property
    def released(self) -> bool:
        return self._released.is_set()

    def arrive(self) -> bool:
        """Register one arriving branch; return True for the releasing branch."""
        if self.released:
            return False
        self.arrived += 1
        if self.arrived < self.required:
            return False
        self._released.set()
        return True

    async def wait(self) -> None:
        await self._released.wait()

    def abandon(self) -> None:
        if not self.released:
            self.abandoned = True
            self._released.set()

    def __repr__(self) -> str:
        return f"JoinGate({self.node_id!r}, {self.arrived}/{self.required})"
