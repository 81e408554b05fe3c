"""Execution layer: wire channel, worker loop, job queue and pool manager.

Architecture::

    models.py      JobDescriptor, Message, events, RunReport
    channel.py     4-byte record codec, DuplexChannel over two pipes
    worker.py      Worker process loop
    jobs.py        FIFO JobQueue, job stream parsing
    pool.py        WorkerPool: spawn, dispatch loop, shutdown
"""
