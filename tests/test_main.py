import asyncio
import logging

from shopbot.main import log_polling_exit, stop_polling


async def _broken_polling():
    raise RuntimeError("Unauthorized")


def test_polling_failure_is_logged_when_it_happens(caplog):
    async def run():
        task = asyncio.create_task(_broken_polling())
        task.add_done_callback(log_polling_exit)
        await asyncio.sleep(0.01)
        return task

    with caplog.at_level(logging.ERROR, logger="shopbot.main"):
        task = asyncio.run(run())

    assert task.done()
    assert "Bot polling stopped with an error" in caplog.text
    assert "Unauthorized" in caplog.text


def test_stop_polling_survives_failed_task():
    async def run():
        task = asyncio.create_task(_broken_polling())
        await asyncio.sleep(0.01)
        await stop_polling(task)
        return task

    task = asyncio.run(run())

    assert isinstance(task.exception(), RuntimeError)


def test_stop_polling_cancels_running_task():
    async def run():
        task = asyncio.create_task(asyncio.sleep(10))
        await asyncio.sleep(0)
        await stop_polling(task)
        return task

    assert asyncio.run(run()).cancelled()
