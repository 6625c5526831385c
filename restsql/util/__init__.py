from .counting_fetch import CountingFetch
