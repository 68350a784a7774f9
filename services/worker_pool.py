import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

logger = logging.getLogger(__name__)


def map_bounded(func, keys, max_workers=4, cancel_event=None):
    """
    Runs func(key) for each key on a bounded thread pool.

    Returns a dict key -> result. Keys that were never run because `cancel_event` was set
    are absent from the result; callers attribute results by key, never by completion order.
    Exceptions raised by func propagate to the caller.
    """
    keys = list(keys)
    results = {}
    if not keys:
        return results

    def cancelled():
        return cancel_event is not None and cancel_event.is_set()

    def run(key):
        if cancelled():
            return key, False, None
        return key, True, func(key)

    workers = max(1, min(int(max_workers or 1), len(keys)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='optimizer') as executor:
        futures = []
        for key in keys:
            if cancelled():
                break
            futures.append(executor.submit(run, key))
        for future in as_completed(futures):
            if future.cancelled():
                continue
            key, ran, value = future.result()
            if ran:
                results[key] = value
            if cancelled():
                for pending in futures:
                    pending.cancel()
    if cancelled() and len(results) < len(keys):
        logger.info('Batch cancelled after %s of %s units of work', len(results), len(keys))
    return results
