"""
sox_hub.db.repositories

Session-bound query objects, one per table. Repositories flush but never commit;
workflow rules belong in `sox_hub.services`.
"""
