#!/usr/bin/env python3
import time


class SelectorNotFoundError(RuntimeError):
    def __init__(self, selector, attempts):
        super().__init__(f"selector {selector!r} not found after {attempts} attempts")
        self.selector = selector
        self.attempts = attempts


def retry_selector(page, selector, retries=5, delay=1.0, sleep=time.sleep):
    """Poll ``page`` until ``selector`` matches an element and return it.

    Makes at most ``retries`` queries and sleeps ``delay`` seconds between
    failed ones, so an exhausted budget costs ``retries - 1`` sleeps.
    """
    if retries < 1:
        raise ValueError(f"retries must be >= 1, got {retries}")
    for attempt in range(1, retries + 1):
        element = page.query_selector(selector)
        if element is not None:
            return element
        if attempt < retries:
            sleep(delay)
    raise SelectorNotFoundError(selector, retries)
