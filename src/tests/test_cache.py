import threading
import unittest

from cache import MemoryCache
from k8s_fakes import make_secret_copier


class TestMemoryCache(unittest.TestCase):

    def setUp(self):
        self.cache = MemoryCache()

    def test_source_secret_index(self):
        self.cache.set_secret_copier(make_secret_copier([
            {'sourceSecret': {'name': 'creds', 'namespace': 'ns-src'}},
            {'sourceSecret': {'name': 'creds', 'namespace': 'ns-src'}, 'targetSecret': {'name': 'other'}},
        ], name='a'))
        self.cache.set_secret_copier(make_secret_copier([
            {'sourceSecret': {'name': 'creds', 'namespace': 'ns-src'}},
            {'sourceSecret': {'name': 'tls', 'namespace': 'ns-src'}},
        ], name='b'))

        self.assertEqual([c.name for c in self.cache.secret_copiers_for_source_secret('ns-src', 'creds')], ['a', 'b'])
        self.assertEqual([c.name for c in self.cache.secret_copiers_for_source_secret('ns-src', 'tls')], ['b'])
        self.assertEqual(self.cache.secret_copiers_for_source_secret('ns-other', 'creds'), [])

    def test_index_follows_updates(self):
        self.cache.set_secret_copier(make_secret_copier([{'sourceSecret': {'name': 'creds', 'namespace': 'ns-src'}}]))
        self.cache.set_secret_copier(make_secret_copier([{'sourceSecret': {'name': 'tls', 'namespace': 'ns-src'}}]))

        self.assertEqual(self.cache.secret_copiers_for_source_secret('ns-src', 'creds'), [])
        self.assertEqual(len(self.cache.secret_copiers_for_source_secret('ns-src', 'tls')), 1)
        self.assertEqual(len(self.cache.all_secret_copiers()), 1)

    def test_remove(self):
        self.cache.set_secret_copier(make_secret_copier([{'sourceSecret': {'name': 'creds', 'namespace': 'ns-src'}}]))

        self.cache.remove_secret_copier('copier')

        self.assertIsNone(self.cache.get_secret_copier('copier'))
        self.assertEqual(self.cache.secret_copiers_for_source_secret('ns-src', 'creds'), [])
        self.assertEqual(self.cache.by_source, {})
        with self.assertRaises(KeyError):
            self.cache.remove_secret_copier('copier')

    def test_concurrent_updates_keep_index_consistent(self):
        creds = {'sourceSecret': {'name': 'creds', 'namespace': 'ns-src'}}
        versions = {
            name: [
                make_secret_copier([creds], name=name),
                make_secret_copier([creds, {'sourceSecret': {'name': 'creds', 'namespace': f'ns-{name}'}}], name=name),
            ]
            for name in ('a', 'b')
        }
        errors = []
        missing = []

        def writer(name):
            try:
                for i in range(2000):
                    self.cache.set_secret_copier(versions[name][i % 2])
            except Exception as e:
                errors.append(e)

        def reader():
            try:
                for _ in range(2000):
                    names = [c.name for c in self.cache.secret_copiers_for_source_secret('ns-src', 'creds')]
                    if names != ['a', 'b']:
                        missing.append(names)
            except Exception as e:
                errors.append(e)

        for name in ('a', 'b'):
            self.cache.set_secret_copier(versions[name][0])

        threads = [threading.Thread(target=writer, args=(name,)) for name in ('a', 'b')]
        threads.append(threading.Thread(target=reader))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(missing, [])
        self.assertEqual([c.name for c in self.cache.secret_copiers_for_source_secret('ns-src', 'creds')], ['a', 'b'])
        self.assertEqual(set(self.cache.by_source), {('ns-src', 'creds'), ('ns-a', 'creds'), ('ns-b', 'creds')})

    def test_remove_ignores_entries_of_other_copiers(self):
        self.cache.set_secret_copier(make_secret_copier([{'sourceSecret': {'name': 'creds', 'namespace': 'ns-a'}}], name='a'))
        self.cache.set_secret_copier(make_secret_copier([{'sourceSecret': {'name': 'creds', 'namespace': 'ns-b'}}], name='b'))

        self.cache.remove_secret_copier('a')

        self.assertEqual(self.cache.by_source, {('ns-b', 'creds'): {'b'}})
