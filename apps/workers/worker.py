import logging

from redis import Redis
from rq import Queue, Worker

from apps.api.app.config import settings


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    conn = Redis.from_url(settings.redis_url)
    q_logos = Queue(settings.queue_name, connection=conn)
    worker = Worker([q_logos], connection=conn)
    worker.work()


if __name__ == "__main__":
    main()
