"""
Tests for jobs/splitter.py
"""
import math
from fractions import Fraction
from unittest.mock import patch

from django.test import SimpleTestCase
from kombu.exceptions import OperationalError

from jobs import splitter, store, worker
from jobs.errors import QueueUnavailable, SourceUnavailable
from jobs.models import Chunk, Job
from jobs.queue import CONVERT_CHUNK_TASK, MERGE_TASK
from jobs.splitter import compute_chunk_bounds

from .fakes import PipelineTestCase


class ChunkBoundsTest(SimpleTestCase):

    def test_95_seconds_in_30_second_chunks(self):
        bounds = compute_chunk_bounds(95, 30)
        self.assertEqual(
            [(b.index, b.start_time, b.end_time) for b in bounds],
            [(0, 0, 30), (1, 30, 60), (2, 60, 90), (3, 90, 95)],
        )

    def test_exact_multiple_has_no_empty_tail(self):
        bounds = compute_chunk_bounds(90, 30)
        self.assertEqual(len(bounds), 3)
        self.assertEqual(bounds[-1].end_time, 90)

    def test_decimal_inputs_do_not_grow_a_sliver_chunk(self):
        bounds = compute_chunk_bounds(2.1, 0.7)

        self.assertEqual(len(bounds), 3)
        self.assertEqual(bounds[-1].end_time, 2.1)
        self.assertAlmostEqual(bounds[-1].start_time, 1.4)

    def test_count_and_last_end_hold_across_durations(self):
        for duration in (0.5, 1, 2.1, 0.3, 29.999, 30, 30.001, 61, 95, 3600, 7261.25):
            for chunk in (0.1, 0.25, 0.7, 1, 7, 30, 45.5, 600):
                bounds = compute_chunk_bounds(duration, chunk)
                # count as decimal arithmetic would give it
                expected = math.ceil(Fraction(str(duration)) / Fraction(str(chunk)))
                self.assertEqual(len(bounds), expected, (duration, chunk))
                self.assertEqual(bounds[-1].end_time, duration)
                self.assertGreater(bounds[-1].end_time - bounds[-1].start_time, 1e-6, (duration, chunk))
                self.assertEqual(bounds[0].start_time, 0)
                for prev, nxt in zip(bounds, bounds[1:]):
                    self.assertEqual(prev.end_time, nxt.start_time)

    def test_source_shorter_than_one_chunk(self):
        bounds = compute_chunk_bounds(12, 30)
        self.assertEqual([(b.start_time, b.end_time) for b in bounds], [(0, 12)])

    def test_rejects_non_positive_chunk_duration(self):
        with self.assertRaises(ValueError):
            compute_chunk_bounds(95, 0)
        with self.assertRaises(ValueError):
            compute_chunk_bounds(95, -5)


class SplitTest(PipelineTestCase):

    def test_split_creates_job_chunks_and_work_items(self):
        self.put_source(95)

        count = splitter.split("job-1", self.SOURCE_KEY, 30)

        self.assertEqual(count, 4)
        job = Job.objects.get(pk="job-1")
        self.assertEqual(job.status, Job.Status.IN_PROGRESS)
        self.assertEqual(job.expected_chunk_count, 4)
        self.assertEqual(job.source_duration, 95)
        self.assertEqual(job.completed_chunk_count, 0)

        chunks = list(Chunk.objects.filter(job=job).order_by("index"))
        self.assertEqual([(c.start_time, c.end_time) for c in chunks], [(0, 30), (30, 60), (60, 90), (90, 95)])
        self.assertTrue(all(c.status == Chunk.Status.PENDING for c in chunks))
        self.assertTrue(all(c.dispatched_at is not None for c in chunks))
        self.assertEqual(self.sent(CONVERT_CHUNK_TASK), [["job-1", i] for i in range(4)])

    def test_supplied_duration_skips_measuring_the_source(self):
        # nothing in the bucket: measuring it would fail
        count = splitter.split("job-1", self.SOURCE_KEY, 30, source_duration=61)

        self.assertEqual(count, 3)
        self.assertEqual(Job.objects.get(pk="job-1").source_duration, 61)

    def test_resplitting_same_job_is_a_no_op(self):
        self.put_source(95)
        splitter.split("job-1", self.SOURCE_KEY, 30)

        count = splitter.split("job-1", self.SOURCE_KEY, 10)

        self.assertEqual(count, 4)
        self.assertEqual(Chunk.objects.filter(job_id="job-1").count(), 4)
        self.assertEqual(len(self.sent(CONVERT_CHUNK_TASK)), 4)
        self.assertEqual(Job.objects.get(pk="job-1").chunk_duration_seconds, 30)

    def test_missing_source_fails_job(self):
        with self.assertRaises(SourceUnavailable):
            splitter.split("job-1", "uploads/nope.mp4", 30)

        job = Job.objects.get(pk="job-1")
        self.assertEqual(job.status, Job.Status.FAILED)
        self.assertIn("Source unavailable", job.error)
        self.assertFalse(Chunk.objects.filter(job=job).exists())
        self.mock_celery.send_task.assert_not_called()

    def test_unreadable_duration_fails_job(self):
        self.object_store.put(self.SOURCE_KEY, b"not a number")

        with self.assertRaises(SourceUnavailable):
            splitter.split("job-1", self.SOURCE_KEY, 30)

        self.assertEqual(Job.objects.get(pk="job-1").status, Job.Status.FAILED)

    def test_non_positive_chunk_duration_rejected_before_any_write(self):
        with self.assertRaises(ValueError):
            splitter.split("job-1", self.SOURCE_KEY, 0)
        self.assertFalse(Job.objects.exists())

    def test_transient_enqueue_failure_is_retried(self):
        self.put_source(95)
        self.mock_celery.send_task.side_effect = [None, OperationalError("broker down"), None, None, None]

        count = splitter.split("job-1", self.SOURCE_KEY, 30)

        self.assertEqual(count, 4)
        self.assertEqual(Job.objects.get(pk="job-1").status, Job.Status.IN_PROGRESS)
        self.assertEqual(
            [c.kwargs["args"] for c in self.mock_celery.send_task.call_args_list],
            [["job-1", 0], ["job-1", 1], ["job-1", 1], ["job-1", 2], ["job-1", 3]],
        )

    def test_enqueue_exhaustion_fails_job_and_keeps_dispatch_record(self):
        self.put_source(95)
        self.mock_celery.send_task.side_effect = [None, None] + [OperationalError("broker down")] * 10

        with self.assertRaises(QueueUnavailable):
            splitter.split("job-1", self.SOURCE_KEY, 30)

        job = Job.objects.get(pk="job-1")
        self.assertEqual(job.status, Job.Status.FAILED)
        self.assertIn("Could not enqueue chunk 2", job.error)
        dispatched = Chunk.objects.filter(job=job, dispatched_at__isnull=False).values_list("index", flat=True)
        self.assertEqual(sorted(dispatched), [0, 1])

    def test_resume_sends_only_undispatched_chunks(self):
        self.put_source(95)
        self.mock_celery.send_task.side_effect = [None] + [OperationalError("down")] * 10
        with self.assertRaises(QueueUnavailable):
            splitter.split("job-1", self.SOURCE_KEY, 30)
        # as if the split task died before the failure was recorded
        Job.objects.filter(pk="job-1").update(status=Job.Status.SPLITTING, error="")
        self.mock_celery.send_task.reset_mock()
        self.mock_celery.send_task.side_effect = None

        count = splitter.split("job-1", self.SOURCE_KEY, 30, resume=True)

        self.assertEqual(count, 4)
        self.assertEqual(self.sent(CONVERT_CHUNK_TASK), [["job-1", 1], ["job-1", 2], ["job-1", 3]])
        self.assertEqual(Job.objects.get(pk="job-1").status, Job.Status.IN_PROGRESS)
        self.assertEqual(Chunk.objects.filter(job_id="job-1").count(), 4)

    def test_chunks_finishing_before_split_returns_still_merge_once(self):
        self.put_source(95)

        def run_inline(task_name, args, **kwargs):
            # a worker picks the item up the moment it is enqueued
            if task_name == CONVERT_CHUNK_TASK:
                worker.process_chunk(*args)

        self.mock_celery.send_task.side_effect = run_inline

        splitter.split("job-1", self.SOURCE_KEY, 30)

        job = Job.objects.get(pk="job-1")
        self.assertEqual(job.completed_chunk_count, 4)
        self.assertEqual(job.status, Job.Status.MERGING)
        self.assertEqual(self.sent(MERGE_TASK), [["job-1"]])

    def test_job_failed_while_measuring_source_is_not_split(self):
        self.put_source(95)
        real_measure = splitter.probe_source_duration

        def measure_then_job_fails(source_key):
            duration = real_measure(source_key)
            store.fail_job("job-1", "cancelled by operator")
            return duration

        with patch("jobs.splitter.probe_source_duration", side_effect=measure_then_job_fails):
            count = splitter.split("job-1", self.SOURCE_KEY, 30)

        self.assertIsNone(count)
        job = Job.objects.get(pk="job-1")
        self.assertEqual(job.status, Job.Status.FAILED)
        self.assertEqual(job.error, "cancelled by operator")
        self.assertFalse(Chunk.objects.filter(job=job).exists())
        self.mock_celery.send_task.assert_not_called()
