import threading
from datetime import datetime, timedelta, timezone

from bibliotheca_import.utils.safe_import_manager import SafeImportJobManager


def test_jobs_are_scoped_per_user():
    manager = SafeImportJobManager()
    manager.create_job('alice', 'task-1', {'status': 'running', 'processed': 0})

    assert manager.get_job('alice', 'task-1')['status'] == 'running'
    assert manager.get_job('bob', 'task-1') is None
    assert manager.get_user_jobs('bob') == {}


def test_duplicate_task_id_is_rejected():
    manager = SafeImportJobManager()

    assert manager.create_job('alice', 'task-1', {}) is not None
    assert manager.create_job('alice', 'task-1', {}) is None
    assert manager.create_job('', 'task-2', {}) is None


def test_snapshots_are_copies():
    manager = SafeImportJobManager()
    manager.create_job('alice', 'task-1', {'processed': 0})

    snapshot = manager.get_job('alice', 'task-1')
    snapshot['processed'] = 99

    assert manager.get_job('alice', 'task-1')['processed'] == 0


def test_update_tracks_status_statistics():
    manager = SafeImportJobManager()
    manager.create_job('alice', 'task-1', {'status': 'running'})

    assert manager.update_job('alice', 'task-1', {'processed': 3, 'status': 'completed'})
    assert not manager.update_job('alice', 'missing', {'processed': 1})

    job = manager.get_job('alice', 'task-1')
    assert job['processed'] == 3
    assert 'updated_at' in job
    stats = manager.get_statistics()
    assert stats['operation_stats']['jobs_created'] == 1
    assert stats['operation_stats']['jobs_completed'] == 1


def test_cancel_sets_the_run_flag():
    manager = SafeImportJobManager()
    flag = manager.create_job('alice', 'task-1', {'status': 'running'})

    assert manager.request_cancel('bob', 'task-1') is False
    assert not flag.is_set()
    assert manager.request_cancel('alice', 'task-1') is True
    assert flag.is_set()
    assert manager.get_job('alice', 'task-1')['status'] == 'cancelling'


def test_finished_jobs_cannot_be_cancelled():
    manager = SafeImportJobManager()
    flag = manager.create_job('alice', 'task-1', {'status': 'completed'})

    assert manager.request_cancel('alice', 'task-1') is False
    assert not flag.is_set()


def test_cleanup_only_removes_old_finished_jobs():
    manager = SafeImportJobManager()
    old = (datetime.now(timezone.utc) - timedelta(hours=48)).isoformat()
    manager.create_job('alice', 'old-done', {'status': 'completed', 'created_at': old})
    manager.create_job('alice', 'old-running', {'status': 'running', 'created_at': old})
    manager.create_job('alice', 'new-done', {'status': 'failed'})

    removed = manager.cleanup_finished_jobs('alice')

    assert removed == 1
    assert set(manager.get_user_jobs('alice')) == {'old-running', 'new-done'}


def test_concurrent_updates_do_not_lose_writes():
    manager = SafeImportJobManager()
    manager.create_job('alice', 'task-1', {'processed': 0})
    lock = threading.Lock()

    def bump():
        for _ in range(200):
            with lock:
                current = manager.get_job('alice', 'task-1')['processed']
                manager.update_job('alice', 'task-1', {'processed': current + 1})

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert manager.get_job('alice', 'task-1')['processed'] == 800
