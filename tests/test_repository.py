"""
Unit tests for MessageRepository.

Tests ordering, identity, pagination windows and the lost-update hazard
of the unguarded load/mutate/save cycle.
"""

import json
import os
import shutil
import sys
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent))

from repository import MessageRepository, next_message_id
from store import JSONStore


class BarrierStore(JSONStore):
    """Makes every loader wait until all parties have loaded before any saves"""

    def __init__(self, path, parties):
        super().__init__(path)
        self.barrier = threading.Barrier(parties, timeout=5)

    def load(self):
        snapshot = super().load()
        self.barrier.wait()
        return snapshot


class TestMessageRepository(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmpdir, 'database.json')
        self.repo = MessageRepository(JSONStore(self.path))

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _insert_many(self, count):
        return [self.repo.insert(text=f'message {i}', username='testuser') for i in range(count)]

    def test_insert_generates_id_and_timestamp(self):
        message = self.repo.insert(text='hello', username='alice')

        self.assertTrue(message.id.isdigit())
        self.assertTrue(message.timestamp.endswith('Z'))
        self.assertEqual(message.type, 'text')
        self.assertFalse(message.isAutoResponse)
        self.assertIsNone(message.replyTo)
        self.assertTrue(self.repo.last_save_ok)

    def test_ids_unique_within_same_clock_tick(self):
        with patch('repository.time.time', return_value=1700000000.0):
            messages = self._insert_many(5)

        ids = [m.id for m in messages]
        self.assertEqual(len(set(ids)), 5)
        self.assertEqual(ids, sorted(ids, key=int))

    def test_next_message_id_uses_clock_when_ahead(self):
        with patch('repository.time.time', return_value=2.0):
            self.assertEqual(next_message_id([]), '2000')

    def test_newest_first(self):
        first, second, third = self._insert_many(3)

        stored = [m.id for m in self.repo.all()]
        self.assertEqual(stored, [third.id, second.id, first.id])

    def test_round_trip_first_page(self):
        self._insert_many(3)
        latest = self.repo.insert(text='latest', username='alice')

        page = self.repo.paginate(0, 1)
        self.assertEqual(page['elements'], [latest.to_dict()])

    def test_pages_are_contiguous(self):
        self._insert_many(7)
        everything = self.repo.paginate(0, 7)['elements']

        for n, m in [(0, 7), (2, 5), (3, 3), (6, 1)]:
            head = self.repo.paginate(0, n)['elements'] if n else []
            tail = self.repo.paginate(n, m)['elements']
            self.assertEqual(head + tail, everything[:n + m])

    def test_has_more(self):
        self._insert_many(5)

        self.assertTrue(self.repo.paginate(0, 4)['pagination']['hasMore'])
        self.assertFalse(self.repo.paginate(0, 5)['pagination']['hasMore'])
        self.assertFalse(self.repo.paginate(2, 3)['pagination']['hasMore'])
        self.assertTrue(self.repo.paginate(1, 3)['pagination']['hasMore'])

    def test_offset_beyond_end(self):
        self._insert_many(2)

        page = self.repo.paginate(10, 5)
        self.assertEqual(page['elements'], [])
        self.assertEqual(page['pagination'], {
            'offset': 10, 'limit': 5, 'totalMessages': 2, 'hasMore': False
        })

    def test_paginate_is_idempotent(self):
        self._insert_many(4)

        self.assertEqual(self.repo.paginate(1, 2), self.repo.paginate(1, 2))

    def test_lookup_user_is_exact_match(self):
        self.assertEqual(self.repo.lookup_user('testuser').id, '1')
        self.assertIsNone(self.repo.lookup_user('TestUser'))
        self.assertIsNone(self.repo.lookup_user('nobody'))

    def test_insert_returns_record_when_save_fails(self):
        with patch.object(self.repo.store, 'save', return_value=False):
            message = self.repo.insert(text='lost', username='alice')

        self.assertEqual(message.text, 'lost')
        self.assertFalse(self.repo.last_save_ok)
        self.assertEqual(self.repo.all(), [])

    def test_save_signal_is_per_thread(self):
        with patch.object(self.repo.store, 'save', return_value=False):
            self.repo.insert(text='lost', username='alice')

        seen = []

        def worker():
            self.repo.insert(text='kept', username='bob')
            seen.append(self.repo.last_save_ok)

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join(5)

        self.assertEqual(seen, [True])
        self.assertFalse(self.repo.last_save_ok)

    def test_reply_does_not_touch_original(self):
        original = self.repo.insert(text='hello', username='alice')
        before = original.to_dict()

        self.repo.insert(text='Texto recibido', username='system',
                         is_auto_response=True, reply_to=original.id)

        stored = {m.id: m.to_dict() for m in self.repo.all()}
        self.assertEqual(stored[original.id], before)

    def test_concurrent_inserts_may_lose_an_update(self):
        """Both inserts load the same snapshot before either saves: last write wins."""
        repo = MessageRepository(BarrierStore(self.path, parties=2))
        repo.store.initialize()
        results = []

        def worker(text):
            results.append(repo.insert(text=text, username='alice'))

        threads = [threading.Thread(target=worker, args=(t,)) for t in ('one', 'two')]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        self.assertEqual(len(results), 2)
        with open(self.path) as f:
            on_disk = json.load(f)  # file is still valid JSON
        ids = [m['id'] for m in on_disk['messages']]
        self.assertEqual(len(ids), 1)
        self.assertEqual(len(ids), len(set(ids)))
        self.assertIn(on_disk['messages'][0]['text'], ('one', 'two'))

    def test_serialized_writes_keep_every_insert(self):
        repo = MessageRepository(JSONStore(self.path), serialize_writes=True)
        threads = [
            threading.Thread(target=repo.insert, kwargs={'text': f'm{i}', 'username': 'alice'})
            for i in range(10)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        ids = [m.id for m in repo.all()]
        self.assertEqual(len(ids), 10)
        self.assertEqual(len(set(ids)), 10)


if __name__ == '__main__':
    unittest.main()
