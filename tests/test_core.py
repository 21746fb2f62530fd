#!/usr/bin/env python3
"""
Unit tests for SoraQueue core modules.
Tests cover: credentials, capacity parsing/monitoring, submission, API client,
config, prompt parsing, traffic observation, status and the control surface.
"""

import sys
import os
import itertools
import json
import tempfile
import threading
from pathlib import Path

# Add project root and this directory to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(Path(__file__).resolve().parent))

import unittest

import requests

from soraqueue.core.constants import (
    ErrorCode, QueuePhase, VideoModel, TimerName,
    BURST_SIZE, SETTLE_DELAY_SEC,
)
from soraqueue.core.capacity import parse_pending_payload
from soraqueue.core.config import AppConfig
from soraqueue.core.control import ControlSurface
from soraqueue.core.credentials import CredentialStore, device_id_from_cookie, mask_secret
from soraqueue.core.error_codes import QueueError, is_recoverable
from soraqueue.core.job_queue import merge_video_settings
from soraqueue.core.models import CredentialBundle, Job, VideoSettings
from soraqueue.core.prompt_parse import (
    parse_prompt_lines, parse_prompt_file, jobs_from_entries,
)
from soraqueue.core.runtime import build_runtime
from soraqueue.core.status import StatusReporter, progress_pct
from soraqueue.core.submission import (
    build_create_payload, frames_for_duration,
)
from soraqueue.core.timers import TimerService
from soraqueue.core.traffic import TrafficObserver, is_service_url

from sora_fakes import BASE_URL, FakeSession, ManualTimers, build_stack


class TestCredentialStore(unittest.TestCase):
    """Test credential merging and header building."""

    def test_not_ready_without_authorization(self):
        store = CredentialStore()
        self.assertFalse(store.is_ready())
        store.observe({'oai-device-id': 'dev'})
        self.assertFalse(store.is_ready())
        store.observe({'Authorization': 'Bearer abc'})
        self.assertTrue(store.is_ready())

    def test_wire_and_bundle_keys(self):
        store = CredentialStore()
        store.observe({'AUTHORIZATION': 'Bearer x', 'openai-sentinel-token': 'sent'})
        store.observe({'device_id': 'dev'})
        bundle = store.snapshot()
        self.assertEqual(bundle, CredentialBundle('Bearer x', 'dev', 'sent'))

    def test_empty_values_do_not_clear(self):
        store = CredentialStore(CredentialBundle(authorization='Bearer keep'))
        self.assertFalse(store.observe({'authorization': '', 'x-other': 'ignored'}))
        self.assertEqual(store.snapshot().authorization, 'Bearer keep')

    def test_merge_converges_in_any_order(self):
        fragments = [
            {'authorization': 'Bearer 1'},
            {'oai-device-id': 'dev-1'},
            {'openai-sentinel-token': 'tok-1', 'authorization': 'Bearer 2'},
        ]
        results = set()
        for order in itertools.permutations(fragments[:2]):
            store = CredentialStore()
            for fragment in order:
                store.observe(fragment)
            store.observe(fragments[2])
            b = store.snapshot()
            results.add((b.authorization, b.device_id, b.sentinel_token))
        self.assertEqual(results, {('Bearer 2', 'dev-1', 'tok-1')})

    def test_snapshot_is_a_copy(self):
        store = CredentialStore(CredentialBundle(authorization='Bearer a'))
        snap = store.snapshot()
        snap.authorization = None
        self.assertTrue(store.is_ready())

    def test_clear(self):
        store = CredentialStore(CredentialBundle('Bearer a', 'dev', 'tok'))
        store.clear('authorization')
        self.assertFalse(store.is_ready())
        self.assertEqual(store.snapshot().device_id, 'dev')
        store.clear()
        self.assertEqual(store.snapshot(), CredentialBundle())

    def test_build_headers(self):
        store = CredentialStore(CredentialBundle('Bearer a', 'dev', None))
        headers = store.build_headers()
        self.assertEqual(headers['Authorization'], 'Bearer a')
        self.assertEqual(headers['oai-device-id'], 'dev')
        self.assertNotIn('openai-sentinel-token', headers)
        self.assertEqual(headers['Content-Type'], 'application/json')

    def test_device_id_from_cookie(self):
        cookie = "foo=1; oai-did=abc-123; bar=2"
        self.assertEqual(device_id_from_cookie(cookie), 'abc-123')
        self.assertIsNone(device_id_from_cookie("foo=1"))
        self.assertIsNone(device_id_from_cookie(None))
        store = CredentialStore()
        self.assertTrue(store.observe_cookie(cookie))
        self.assertEqual(store.snapshot().device_id, 'abc-123')

    def test_mask_secret(self):
        self.assertEqual(mask_secret(None), "<none>")
        self.assertEqual(mask_secret("short"), "***")
        masked = mask_secret("Bearer eyJhbGciOiJIUzI1NiJ9.secret")
        self.assertTrue(masked.startswith("Bearer e"))
        self.assertNotIn("secret", masked)


class TestPendingParsing(unittest.TestCase):
    """Test pending-work payload normalization."""

    def test_bare_list(self):
        snap = parse_pending_payload('[{"status": "running"}, {"status": "done"}]', 5.0)
        self.assertEqual(snap.task_count, 2)
        self.assertEqual(snap.running_count, 1)
        self.assertEqual(snap.observed_at, 5.0)
        self.assertFalse(snap.has_free_slot)

    def test_wrapped_lists(self):
        self.assertEqual(parse_pending_payload('{"tasks": []}', 0).task_count, 0)
        self.assertEqual(parse_pending_payload({'items': [{}, {}]}, 0).task_count, 2)
        self.assertTrue(parse_pending_payload(b'[]', 0).has_free_slot)

    def test_malformed_payloads(self):
        for raw in ('not json', '42', '"text"', '{"foo": []}', '{"tasks": 3}', b'\xff\xfe', None):
            with self.assertRaises(QueueError) as ctx:
                parse_pending_payload(raw, 0)
            self.assertEqual(ctx.exception.code, ErrorCode.MALFORMED_PAYLOAD)


class TestCapacityMonitor(unittest.TestCase):
    """Test the edge-triggered slot-free event."""

    def setUp(self):
        self.stack = build_stack()
        self.monitor = self.stack.monitor
        self.events = []
        self.monitor.on_slot_free = lambda: self.events.append(self.stack.timers.now())

    def test_no_event_when_not_armed(self):
        self.monitor.ingest("[]")
        self.assertEqual(self.events, [])
        self.assertEqual(self.monitor.pending_count, 0)

    def test_fires_once_per_arm(self):
        self.monitor.ingest('[{"status": "running"}]')
        self.monitor.arm_awaiting()
        self.monitor.ingest("[]")
        self.monitor.ingest("[]")
        self.monitor.ingest('{"tasks": []}')
        self.assertEqual(len(self.events), 1)
        self.assertFalse(self.monitor.is_armed)

    def test_rearm_with_fresh_empty_reading_fires_immediately(self):
        self.monitor.ingest("[]")
        self.monitor.arm_awaiting()
        self.assertEqual(len(self.events), 1)

    def test_empty_reading_from_before_last_submission_does_not_fire(self):
        """An empty list read before job N was sent says nothing about room for job N+1."""
        self.monitor.ingest("[]")
        self.monitor.mark_stale()
        self.monitor.arm_awaiting()
        self.assertEqual(self.events, [])
        self.monitor.ingest("[]")
        self.assertEqual(len(self.events), 1)

    def test_disarm(self):
        self.monitor.arm_awaiting()
        self.monitor.disarm()
        self.monitor.ingest("[]")
        self.assertEqual(self.events, [])

    def test_malformed_payload_keeps_previous_snapshot(self):
        self.monitor.ingest('[{"status": "pending"}]')
        before = self.monitor.snapshot
        self.monitor.arm_awaiting()
        self.assertFalse(self.monitor.ingest("{broken"))
        self.assertIs(self.monitor.snapshot, before)
        self.assertEqual(self.events, [])

    def test_poll_once_without_credentials_skips_http(self):
        stack = build_stack(authorization=None)
        self.assertFalse(stack.monitor.poll_once())
        self.assertEqual(stack.session.calls, [])

    def test_poll_once_http_failure_is_dropped(self):
        self.monitor.ingest("[]")
        before = self.monitor.snapshot
        self.stack.session.pending_responses.append(requests.exceptions.Timeout())
        self.assertFalse(self.monitor.poll_once())
        self.assertIs(self.monitor.snapshot, before)

    def test_poll_once_ingests(self):
        self.monitor.arm_awaiting()
        self.stack.session.pending_responses.append((200, "[]"))
        self.assertTrue(self.monitor.poll_once())
        self.assertEqual(len(self.events), 1)
        call = self.stack.session.pending_calls()[0]
        self.assertEqual(call['method'], 'GET')
        self.assertEqual(call['headers']['Authorization'], 'Bearer test-token')


class TestSubmission(unittest.TestCase):
    """Test payload building and outcome classification."""

    def test_frames_for_duration(self):
        self.assertEqual(frames_for_duration(5), 150)
        self.assertEqual(frames_for_duration(10), 300)
        self.assertEqual(frames_for_duration(15), 450)
        self.assertEqual(frames_for_duration(20), 600)
        self.assertEqual(frames_for_duration(7), 300)
        self.assertEqual(frames_for_duration(None), 300)

    def test_payload_shape(self):
        settings = VideoSettings(model=VideoModel.PRO, orientation='square',
                                 duration_seconds=5, size_tier='large')
        payload = build_create_payload("a fox in snow", settings)
        self.assertEqual(payload['kind'], 'video')
        self.assertEqual(payload['prompt'], "a fox in snow")
        self.assertEqual(payload['orientation'], 'square')
        self.assertEqual(payload['size'], 'large')
        self.assertEqual(payload['n_frames'], 150)
        self.assertEqual(payload['model'], 'sy_8_pro')
        self.assertEqual(payload['inpaint_items'], [])
        for key in ('title', 'remix_target_id', 'metadata', 'cameo_ids',
                    'cameo_replacements', 'style_id', 'audio_caption',
                    'audio_transcript', 'video_caption', 'storyboard_id'):
            self.assertIsNone(payload[key])

    def test_success(self):
        stack = build_stack()
        outcome = stack.submitter.submit(Job("s", "prompt text"), VideoSettings())
        self.assertTrue(outcome.success)
        self.assertEqual(outcome.status_code, 200)
        call = stack.session.creates()[0]
        self.assertEqual(call['method'], 'POST')
        self.assertEqual(call['url'], f"{BASE_URL}/backend/nf/create")
        self.assertEqual(call['headers']['oai-device-id'], 'device-1234')
        self.assertEqual(call['body']['n_frames'], 300)

    def test_non_2xx_is_remote_error(self):
        stack = build_stack()
        stack.session.create_responses.append((403, "x" * 1000))
        outcome = stack.submitter.submit(Job("s", "p"), VideoSettings())
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error_code, ErrorCode.REMOTE_ERROR)
        self.assertEqual(outcome.status_code, 403)
        self.assertLess(len(outcome.detail), 400)

    def test_no_credential_fails_without_http(self):
        stack = build_stack(authorization=None)
        outcome = stack.submitter.submit(Job("s", "p"), VideoSettings())
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error_code, ErrorCode.NO_CREDENTIAL)
        self.assertEqual(stack.session.calls, [])

    def test_unexpected_exception_becomes_failed_outcome(self):
        stack = build_stack(authorization="Bearer abc…")
        stack.session.create_responses.append(
            UnicodeEncodeError('latin-1', 'Bearer abc…', 10, 11, 'ordinal not in range(256)'))
        outcome = stack.submitter.submit(Job("s", "p"), VideoSettings())
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error_code, ErrorCode.REMOTE_ERROR)
        self.assertIn("UnicodeEncodeError", outcome.detail)
        self.assertEqual(len(stack.session.creates()), 1)


class TestApiClient(unittest.TestCase):
    """Test the raw endpoint wrappers."""

    def test_fetch_drafts(self):
        stack = build_stack()
        stack.session.drafts_responses.append((200, {"items": [{"id": "d1"}]}))
        self.assertEqual(stack.api.fetch_drafts(5), {"items": [{"id": "d1"}]})
        self.assertEqual(stack.session.calls[0]['params'], {'limit': 5})

    def test_fetch_drafts_error(self):
        stack = build_stack()
        stack.session.drafts_responses.append((500, "boom"))
        with self.assertRaises(QueueError) as ctx:
            stack.api.fetch_drafts()
        self.assertEqual(ctx.exception.code, ErrorCode.REMOTE_ERROR)
        self.assertEqual(ctx.exception.status_code, 500)

    def test_verify_credentials(self):
        stack = build_stack()
        self.assertEqual(stack.api.verify_credentials(), (True, "Credentials accepted"))
        stack.session.pending_responses.append((401, "expired"))
        ok, message = stack.api.verify_credentials()
        self.assertFalse(ok)
        self.assertIn("invalid", message)
        self.assertFalse(build_stack(authorization=None).api.verify_credentials()[0])


class TestErrorCodes(unittest.TestCase):

    def test_recoverable(self):
        self.assertTrue(is_recoverable(ErrorCode.REMOTE_ERROR))
        self.assertTrue(is_recoverable(ErrorCode.NO_CREDENTIAL))
        self.assertFalse(is_recoverable(ErrorCode.EMPTY_JOB_LIST))
        self.assertTrue(QueueError(ErrorCode.MALFORMED_PAYLOAD, "x").recoverable)
        self.assertFalse(QueueError(ErrorCode.INVALID_JOB, "x").recoverable)


class TestConfig(unittest.TestCase):
    """Test config defaults, validation and persistence."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "config.json"

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_defaults(self):
        config = AppConfig(self.path)
        timing = config.timing()
        self.assertEqual(timing.burst_size, BURST_SIZE)
        self.assertEqual(timing.settle_delay_sec, SETTLE_DELAY_SEC)
        self.assertFalse(self.path.exists())

    def test_set_clamps_and_persists(self):
        config = AppConfig(self.path)
        config.set('burst_size', 50)
        config.set('poll_interval_sec', "0.1")
        config.set('settle_delay_sec', "soon")
        reloaded = AppConfig(self.path)
        self.assertEqual(reloaded.get('burst_size'), 10)
        self.assertEqual(reloaded.get('poll_interval_sec'), 0.5)
        self.assertEqual(reloaded.get('settle_delay_sec'), SETTLE_DELAY_SEC)

    def test_override_does_not_write(self):
        config = AppConfig(self.path)
        config.override('burst_size', 5)
        self.assertEqual(config.timing().burst_size, 5)
        self.assertFalse(self.path.exists())

    def test_corrupt_file_falls_back_to_defaults(self):
        self.path.write_text("{not json")
        config = AppConfig(self.path)
        self.assertEqual(config.get('burst_size'), BURST_SIZE)

    def test_device_id_and_video_settings(self):
        config = AppConfig(self.path)
        config.device_id = "dev-9"
        config.video_settings = {'model': 'sora2pro'}
        reloaded = AppConfig(self.path)
        self.assertEqual(reloaded.device_id, "dev-9")
        self.assertEqual(reloaded.video_settings['model'], 'sora2pro')
        self.assertEqual(reloaded.video_settings['duration'], 10)


class TestVideoSettings(unittest.TestCase):

    def test_merge(self):
        merged = merge_video_settings(VideoSettings(), {
            'model': 'sora2pro', 'orientation': 'landscape', 'duration': '20', 'size': 'large',
        })
        self.assertEqual(merged, VideoSettings(VideoModel.PRO, 'landscape', 20, 'large'))

    def test_invalid_values_ignored(self):
        base = VideoSettings()
        merged = merge_video_settings(base, {'model': 'sora9', 'orientation': 'diagonal',
                                             'duration': 'long'})
        self.assertEqual(merged, base)

    def test_sora2_maps_to_standard(self):
        merged = merge_video_settings(VideoSettings(model=VideoModel.PRO), {'model': 'sora2'})
        self.assertEqual(merged.model, VideoModel.STANDARD)

    def test_unsupported_duration_ignored(self):
        base = VideoSettings(duration_seconds=15)
        for duration in (7, -3, '12', 600):
            self.assertEqual(merge_video_settings(base, {'duration': duration}).duration_seconds, 15)
        self.assertEqual(merge_video_settings(base, {'duration_seconds': 5}).duration_seconds, 5)


class TestPromptParsing(unittest.TestCase):
    """Test prompt list parsing."""

    def test_parse_lines(self):
        jobs = parse_prompt_lines("""
        Opening | a drone shot over a city at dawn

        a cat playing piano
        """)
        self.assertEqual(len(jobs), 2)
        self.assertEqual(jobs[0].scene_label, "Opening")
        self.assertEqual(jobs[0].full_prompt, "a drone shot over a city at dawn")
        self.assertEqual(jobs[1].scene_label, "Prompt 2")

    def test_parse_lines_empty(self):
        self.assertEqual(parse_prompt_lines("   \n\n  "), [])

    def test_entries_validation(self):
        jobs = jobs_from_entries([{'scene': 'S1', 'fullPrompt': 'p1'}, 'p2'])
        self.assertEqual([j.full_prompt for j in jobs], ['p1', 'p2'])
        with self.assertRaises(QueueError) as ctx:
            jobs_from_entries([{'scene': 'no prompt'}])
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_JOB)
        with self.assertRaises(QueueError):
            jobs_from_entries("not a list")

    def test_parse_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            json_path = os.path.join(tmpdir, "prompts.json")
            with open(json_path, 'w') as f:
                json.dump({'prompts': [{'scene': 'A', 'fullPrompt': 'first'}, 'second']}, f)
            self.assertEqual([j.full_prompt for j in parse_prompt_file(json_path)],
                             ['first', 'second'])

            csv_path = os.path.join(tmpdir, "prompts.csv")
            with open(csv_path, 'w') as f:
                f.write("scene,prompt\nIntro,hello world\nOutro,\nEnd,goodbye\n")
            jobs = parse_prompt_file(csv_path)
            self.assertEqual([(j.scene_label, j.full_prompt) for j in jobs],
                             [('Intro', 'hello world'), ('End', 'goodbye')])

            bare_csv = os.path.join(tmpdir, "bare.csv")
            with open(bare_csv, 'w') as f:
                f.write("just one prompt\nand another\n")
            self.assertEqual(len(parse_prompt_file(bare_csv)), 2)

            txt_path = os.path.join(tmpdir, "prompts.txt")
            with open(txt_path, 'w') as f:
                f.write("one\ntwo\nthree\n")
            self.assertEqual(len(parse_prompt_file(txt_path)), 3)


class TestTrafficObserver(unittest.TestCase):

    def setUp(self):
        self.stack = build_stack(authorization=None)
        self.observer = TrafficObserver(self.stack.credentials, self.stack.monitor)

    def test_is_service_url(self):
        self.assertTrue(is_service_url("https://sora.chatgpt.com/backend/nf/pending"))
        self.assertFalse(is_service_url("https://evil.example/sora.chatgpt.com"))

    def test_request_headers_from_service_only(self):
        self.assertFalse(self.observer.observe_request(
            "https://other.example/api", {'Authorization': 'Bearer nope'}))
        self.assertFalse(self.stack.credentials.is_ready())
        self.assertTrue(self.observer.observe_request(
            "https://sora.chatgpt.com/backend/me", {'authorization': 'Bearer yes'}))
        self.assertTrue(self.stack.credentials.is_ready())

    def test_pending_responses_feed_monitor(self):
        self.assertFalse(self.observer.observe_response(
            "https://sora.chatgpt.com/backend/me", "[]"))
        self.assertIsNone(self.stack.monitor.pending_count)
        self.assertTrue(self.observer.observe_response(
            "https://sora.chatgpt.com/backend/nf/pending", '[{"status": "running"}]'))
        self.assertEqual(self.stack.monitor.pending_count, 1)


class TestStatusAndControl(unittest.TestCase):
    """Test the status projection and command dispatch."""

    def setUp(self):
        self.stack = build_stack()
        self.reporter = StatusReporter(self.stack.scheduler, self.stack.monitor,
                                       self.stack.credentials)
        self.control = ControlSurface(self.stack.scheduler, self.reporter, self.stack.api)
        self.notifications = []
        self.control.notify = self.notifications.append

    def start(self, *prompts):
        return self.control.dispatch({'type': 'START_QUEUE', 'data': {
            'prompts': [{'scene': f'S{i}', 'fullPrompt': p} for i, p in enumerate(prompts)],
        }})

    def test_status_before_any_run(self):
        status = self.control.dispatch({'type': 'GET_STATUS'})
        self.assertEqual(status['phase'], QueuePhase.IDLE)
        for key in ('total', 'cursor', 'sent', 'errors', 'remaining'):
            self.assertEqual(status[key], 0)
        self.assertIsNone(status['pendingTaskCount'])
        self.assertTrue(status['credentialReady'])
        self.assertFalse(status['isActive'])
        self.assertEqual(progress_pct(status), 0)

    def test_unknown_command(self):
        self.assertEqual(self.control.dispatch({'type': 'DANCE'}),
                         {'success': False, 'error': 'Unknown message'})
        self.assertFalse(self.control.dispatch("garbage")['success'])

    def test_start_without_prompts_is_rejected(self):
        response = self.control.dispatch({'type': 'START_QUEUE', 'data': {'prompts': []}})
        self.assertFalse(response['success'])
        self.assertEqual(self.stack.scheduler.phase, QueuePhase.IDLE)

    def test_start_with_invalid_prompt_is_rejected(self):
        response = self.control.dispatch({'type': 'START_QUEUE',
                                          'data': {'prompts': [{'scene': 'x'}]}})
        self.assertFalse(response['success'])
        self.assertEqual(self.stack.scheduler.phase, QueuePhase.IDLE)

    def test_non_object_data_is_rejected(self):
        for message in ({'type': 'START_QUEUE', 'data': ['p1']},
                        {'type': 'GET_DRAFTS', 'data': 'x'},
                        {'type': 'APPLY_VIDEO_SETTINGS', 'data': 42}):
            response = self.control.dispatch(message)
            self.assertFalse(response['success'])
            self.assertIn('error', response)
        self.assertEqual(self.stack.scheduler.phase, QueuePhase.IDLE)

    def test_start_with_non_object_settings_is_rejected(self):
        for settings in ("x", {'videoSettings': "x"}, [1, 2]):
            response = self.control.dispatch({'type': 'START_QUEUE', 'data': {
                'prompts': ['p1'], 'settings': settings,
            }})
            self.assertFalse(response['success'])
        self.assertEqual(self.stack.scheduler.phase, QueuePhase.IDLE)
        self.assertEqual(self.control.dispatch({'type': 'APPLY_VIDEO_SETTINGS',
                                                'data': {'settings': 'x'}}),
                         {'success': False, 'error': 'Settings must be an object'})

    def test_full_run_notifies_once(self):
        self.assertEqual(self.start('p1', 'p2'), {'success': True})
        self.stack.timers.advance(0)
        status = self.control.dispatch({'type': 'GET_STATUS'})
        self.assertEqual((status['cursor'], status['sent'], status['remaining']), (1, 1, 1))
        self.assertEqual(status['mode'], 'BURST')
        self.assertEqual(progress_pct(status), 50)

        self.stack.timers.advance(3)
        self.stack.timers.advance(60)
        self.assertEqual(self.notifications, [
            {'type': 'QUEUE_COMPLETE', 'data': {'sent': 2, 'errors': 0, 'total': 2}},
        ])

    def test_pause_resume_stop_commands(self):
        self.start('a', 'b', 'c', 'd')
        for _ in range(3):
            self.stack.timers.advance(3)
        self.assertEqual(self.control.dispatch({'type': 'GET_STATUS'})['mode'], 'PENDING_CHECK')

        self.assertEqual(self.control.dispatch({'type': 'PAUSE_QUEUE'}), {'success': True})
        status = self.control.dispatch({'type': 'GET_STATUS'})
        self.assertTrue(status['isPaused'])
        self.assertEqual(status['phase'], QueuePhase.PAUSED)

        self.control.dispatch({'type': 'RESUME_QUEUE'})
        self.assertEqual(self.stack.timers.active_names(), {TimerName.POLL})

        self.control.dispatch({'type': 'STOP_QUEUE'})
        status = self.control.dispatch({'type': 'GET_STATUS'})
        self.assertEqual(status['phase'], QueuePhase.STOPPED)
        self.assertEqual(status['cursor'], 3)

    def test_apply_video_settings(self):
        response = self.control.dispatch({'type': 'APPLY_VIDEO_SETTINGS',
                                          'data': {'model': 'sora2pro', 'duration': 20}})
        self.assertTrue(response['success'])
        settings = self.stack.scheduler.settings
        self.assertEqual(settings.model, VideoModel.PRO)
        self.assertEqual(settings.duration_seconds, 20)

    def test_start_with_nested_video_settings(self):
        self.control.dispatch({'type': 'START_QUEUE', 'data': {
            'prompts': ['p1'],
            'settings': {'videoSettings': {'orientation': 'landscape'}},
        }})
        self.stack.timers.advance(0)
        self.assertEqual(self.stack.session.creates()[0]['body']['orientation'], 'landscape')

    def test_get_drafts(self):
        self.stack.session.drafts_responses.append((200, {"items": [{"id": "d"}]}))
        response = self.control.dispatch({'type': 'GET_DRAFTS'})
        self.assertEqual(response, {'success': True, 'drafts': {"items": [{"id": "d"}]}})
        self.assertEqual(self.stack.session.calls[-1]['params'], {'limit': 15})

        self.stack.session.drafts_responses.append((503, "unavailable"))
        response = self.control.dispatch({'type': 'GET_DRAFTS', 'data': {'limit': 3}})
        self.assertFalse(response['success'])
        self.assertIn('503', response['error'])


class TestTimerService(unittest.TestCase):
    """Test the real threaded timer service."""

    def setUp(self):
        self.timers = TimerService()

    def tearDown(self):
        self.timers.shutdown()

    def test_callback_runs(self):
        fired = threading.Event()
        self.timers.call_later("t", 0.01, fired.set)
        self.assertTrue(fired.wait(2))
        self.assertEqual(self.timers.active_names(), set())

    def test_rearming_a_name_replaces_it(self):
        calls = []
        done = threading.Event()
        self.timers.call_later("t", 0.05, lambda: calls.append("first"))
        self.timers.call_later("t", 0.05, lambda: (calls.append("second"), done.set()))
        self.assertEqual(self.timers.active_names(), {"t"})
        self.assertTrue(done.wait(2))
        self.assertEqual(calls, ["second"])

    def test_cancel(self):
        fired = threading.Event()
        self.timers.call_later("t", 0.05, fired.set)
        self.timers.cancel("t")
        self.assertFalse(fired.wait(0.2))

    def test_failing_callback_does_not_stop_service(self):
        fired = threading.Event()

        def boom():
            raise RuntimeError("boom")

        self.timers.call_later("a", 0.0, boom)
        self.timers.call_later("b", 0.02, fired.set)
        self.assertTrue(fired.wait(2))


class TestRuntime(unittest.TestCase):

    def test_build_runtime_wires_components(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = AppConfig(Path(tmpdir) / "config.json")
            config.override('device_id', 'dev-from-config')
            config.override('video_settings', {'model': 'sora2pro'})
            runtime = build_runtime(config, CredentialStore(), timers=ManualTimers(),
                                    session=FakeSession())
            self.assertEqual(runtime.credentials.snapshot().device_id, 'dev-from-config')
            self.assertEqual(runtime.scheduler.settings.model, VideoModel.PRO)
            self.assertIs(runtime.monitor.on_slot_free.__self__, runtime.scheduler)
            status = runtime.control.dispatch({'type': 'GET_STATUS'})
            self.assertFalse(status['credentialReady'])
            runtime.shutdown()
            self.assertTrue(runtime.api.session.closed)

    def test_seeded_device_id_wins_over_persisted_one(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = AppConfig(Path(tmpdir) / "config.json")
            config.override('device_id', 'stale-from-config')
            credentials = CredentialStore()
            credentials.observe_cookie("oai-did=fresh-from-cookie")
            runtime = build_runtime(config, credentials, timers=ManualTimers(),
                                    session=FakeSession())
            self.assertEqual(runtime.credentials.snapshot().device_id, 'fresh-from-cookie')
            runtime.shutdown()


if __name__ == "__main__":
    unittest.main()
