"""
Tests for jobs/merger.py
"""
from unittest.mock import patch

from jobs import merger, splitter, store
from jobs.errors import ConversionFailed, IncompleteJob, ObjectStoreUnavailable, StoreUnavailable
from jobs.models import Chunk, Job
from jobs.queue import MERGE_TASK
from jobs.worker import chunk_output_key, process_chunk

from .fakes import FakeCodec, InMemoryObjectStore, PipelineTestCase


class MergeTest(PipelineTestCase):

    def setUp(self):
        super().setUp()
        self.put_source(95)
        splitter.split("job-1", self.SOURCE_KEY, 30)

    def convert_all(self, order=(0, 1, 2, 3)):
        for i in order:
            process_chunk("job-1", i)

    def test_merge_joins_chunks_in_index_order(self):
        self.convert_all(order=(3, 1, 0, 2))

        output_key = merger.merge("job-1")

        self.assertEqual(output_key, "outputs/job-1/talk_merged.bin")
        expected = b"".join(
            self.object_store.get(chunk_output_key("job-1", i, "bin")) for i in range(4)
        )
        self.assertEqual(self.object_store.get(output_key), expected)
        self.assertEqual(expected, b"[0-30][30-60][60-90][90-95]")

        job = Job.objects.get(pk="job-1")
        self.assertEqual(job.status, Job.Status.COMPLETE)
        self.assertEqual(job.output_key, output_key)

    def test_merge_of_job_not_merging_is_skipped(self):
        self.convert_all(order=(0, 1, 2))

        self.assertIsNone(merger.merge("job-1"))
        self.assertEqual(Job.objects.get(pk="job-1").status, Job.Status.IN_PROGRESS)
        self.assertEqual(self.object_store.list("outputs/"), [])

    def test_redelivered_merge_after_completion_is_noop(self):
        self.convert_all()
        first = merger.merge("job-1")

        self.assertIsNone(merger.merge("job-1"))
        self.assertEqual(Job.objects.get(pk="job-1").output_key, first)

    def test_missing_chunk_output_fails_with_incomplete_job(self):
        self.convert_all()
        # read skew: a chunk row lost its output reference
        Chunk.objects.filter(job_id="job-1", index=2).update(output_key="")

        with self.assertRaises(IncompleteJob) as ctx:
            merger.merge("job-1")

        self.assertEqual(ctx.exception.missing, [2])
        job = Job.objects.get(pk="job-1")
        self.assertEqual(job.status, Job.Status.FAILED)
        self.assertIn("missing chunk outputs", job.error)
        self.assertEqual(self.object_store.list("outputs/"), [])

    def test_codec_failure_fails_job_and_keeps_chunk_outputs(self):
        self.convert_all()
        FakeCodec.fail_concat = True

        with self.assertRaises(ConversionFailed):
            merger.merge("job-1")

        self.assertEqual(Job.objects.get(pk="job-1").status, Job.Status.FAILED)
        self.assertEqual(len(self.object_store.list("chunks/job-1/")), 4)
        self.assertEqual(self.object_store.list("outputs/"), [])

    def test_retry_merge_reuses_converted_chunks(self):
        self.convert_all()
        FakeCodec.fail_concat = True
        with self.assertRaises(ConversionFailed):
            merger.merge("job-1")
        FakeCodec.fail_concat = False
        self.mock_celery.send_task.reset_mock()

        self.assertTrue(merger.retry_merge("job-1"))
        self.assertEqual(self.sent(MERGE_TASK), [["job-1"]])
        self.assertEqual(Job.objects.get(pk="job-1").error, "")

        merger.merge("job-1")

        self.assertEqual(Job.objects.get(pk="job-1").status, Job.Status.COMPLETE)
        self.assertEqual(len(FakeCodec.conversions), 4)

    def test_retry_merge_refused_with_unconverted_chunks(self):
        process_chunk("job-1", 0)
        store.fail_job("job-1", "chunk 1 gave up")

        self.assertFalse(merger.retry_merge("job-1"))
        self.assertEqual(Job.objects.get(pk="job-1").status, Job.Status.FAILED)

    def test_retry_merge_refused_for_active_job(self):
        self.assertFalse(merger.retry_merge("job-1"))

    def test_store_outage_leaves_job_merging_for_retry(self):
        self.convert_all()
        with patch("jobs.merger.store.list_chunks", side_effect=StoreUnavailable("connection reset")):
            with self.assertRaises(StoreUnavailable):
                merger.merge("job-1")
        self.assertEqual(Job.objects.get(pk="job-1").status, Job.Status.MERGING)

        output_key = merger.merge("job-1")

        self.assertEqual(Job.objects.get(pk="job-1").status, Job.Status.COMPLETE)
        self.assertEqual(self.object_store.get(output_key), b"[0-30][30-60][60-90][90-95]")

    def test_object_store_outage_leaves_job_merging(self):
        self.convert_all()
        with patch.object(InMemoryObjectStore, "put", side_effect=ObjectStoreUnavailable("put: timed out")):
            with self.assertRaises(ObjectStoreUnavailable):
                merger.merge("job-1")

        self.assertEqual(Job.objects.get(pk="job-1").status, Job.Status.MERGING)
