"""Run blocking CPU-bound work in a child process that can be killed.

Threads cannot be stopped once started, so renderers and the layout pass
run in a spawned process instead. Cancelling the awaiting coroutine (a
slice timeout or the job deadline) terminates the child before the
cancellation propagates.
"""
import asyncio
import logging
import multiprocessing
import signal

from .errors import FailureCategory, classify_exception

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.02
TERMINATE_GRACE = 2.0

# Forking a process that holds browser or executor threads can deadlock
# the child, so every call gets a clean interpreter.
_CONTEXT = multiprocessing.get_context("spawn")


class IsolatedError(Exception):
    """An exception raised inside the child, carried back by value."""

    def __init__(self, category: str, detail: str) -> None:
        super().__init__(detail)
        self.category = category
        self.detail = detail


def _child_main(conn) -> None:
    target, args = conn.recv()
    try:
        result = target(*args)
    except Exception as e:
        detail = getattr(e, "detail", None) or f"{type(e).__name__}: {e}"
        conn.send(("error", classify_exception(e), detail))
    else:
        conn.send(("ok", result))
    finally:
        conn.close()


def _stop(process) -> None:
    if process.is_alive():
        process.terminate()
        process.join(TERMINATE_GRACE)
        if process.is_alive():
            process.kill()
    process.join()


def _died(process) -> IsolatedError:
    # SIGKILL from outside is almost always the OOM killer.
    if process.exitcode == -signal.SIGKILL:
        category = FailureCategory.RESOURCE
    else:
        category = FailureCategory.RENDER_ERROR
    return IsolatedError(category, f"worker process exited with code {process.exitcode}")


async def run_isolated(target, *args):
    """Call ``target(*args)`` in a fresh process and return its result.

    ``target`` and ``args`` must be picklable. Exceptions inside the child
    come back as IsolatedError with a failure category, as does a child
    that dies without answering.
    """
    conn, child_conn = _CONTEXT.Pipe()
    process = _CONTEXT.Process(target=_child_main, args=(child_conn,), daemon=True)
    process.start()
    child_conn.close()
    sent = False
    try:
        # Large documents fill the pipe; the child drains it only once its imports finish.
        await asyncio.to_thread(conn.send, (target, args))
        sent = True
        while not conn.poll():
            if not process.is_alive() and not conn.poll():
                raise _died(process)
            await asyncio.sleep(POLL_INTERVAL)
        try:
            message = conn.recv()
        except EOFError:
            raise _died(process) from None
    except asyncio.CancelledError:
        logger.info("stopping worker process %s after cancellation", process.pid)
        raise
    except (BrokenPipeError, ConnectionResetError):
        raise _died(process) from None
    finally:
        _stop(process)
        # An interrupted send still holds the connection in its thread.
        if sent:
            conn.close()

    if message[0] == "ok":
        return message[1]
    raise IsolatedError(message[1], message[2])
