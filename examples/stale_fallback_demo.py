#!/usr/bin/env python3

import asyncio
import logging

import click
import httpx

from task_cache import ClientConfig, TaskService


async def run(base: str, rounds: int, fail_rate: float) -> None:
    config = ClientConfig.from_dict(
        {
            "api": {"base_url": f"{base}/api", "token": "demo-token"},
            "retry": {"max_attempts": 3, "base_delay_ms": 200},
            "cache": {"ttl_seconds": {"task_lists": 1}},
        }
    )
    async with TaskService.from_config(config) as service, httpx.AsyncClient(base_url=base) as admin:
        lists = await service.get_lists("foh")
        print("initial:", [tl.title for tl in lists])

        await admin.post("/_chaos", json={"fail_rate": fail_rate})
        for i in range(rounds):
            await asyncio.sleep(1.1)  # let the 1s TTL lapse
            lists = await service.get_lists("foh")
            print(f"round {i + 1}:", [tl.title for tl in lists])
        await admin.post("/_chaos", json={"fail_rate": 0.0})


@click.command()
@click.option("--base", default="http://127.0.0.1:5000", help="Base URL of examples/mock_task_api.py")
@click.option("--rounds", default=3, show_default=True)
@click.option("--fail-rate", default=1.0, show_default=True, help="Fraction of reads the mock API fails")
def main(base: str, rounds: int, fail_rate: float) -> None:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(run(base, rounds, fail_rate))


if __name__ == "__main__":
    main()
