# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for candidate validation and prediction suppression."""

import pytest

from tabflow.completion.heuristics import (
    InvalidReason,
    PredictionSuppressor,
    ValidationHeuristics,
)
from tabflow.config.settings import HeuristicSettings, HeuristicType
from tests.helpers import DOC_URI, make_document, make_lines


@pytest.fixture
def heuristics():
    return ValidationHeuristics()


@pytest.fixture
def document():
    return make_document()


class TestValidationHeuristics:
    """Tests for ValidationHeuristics.is_valid_cpp_case."""

    def test_unchanged_line_is_no_op(self, heuristics, document):
        result = heuristics.is_valid_cpp_case(document, 10, 10, "bar")
        assert not result.valid
        assert result.reason == InvalidReason.NO_OP

    def test_surrounding_whitespace_is_still_no_op(self, heuristics, document):
        result = heuristics.is_valid_cpp_case(document, 10, 10, "  bar\n")
        assert result.reason == InvalidReason.NO_OP

    def test_real_change_is_valid(self, heuristics, document):
        result = heuristics.is_valid_cpp_case(document, 10, 10, "bar();")
        assert result.valid
        assert result.text == "bar();"
        assert result.reason is None

    def test_whitespace_only_change(self, heuristics, document):
        result = heuristics.is_valid_cpp_case(document, 10, 10, "b a r")
        assert result.reason == InvalidReason.WHITESPACE_ONLY

    def test_whitespace_only_change_allowed_by_setting(self, document):
        heuristics = ValidationHeuristics(HeuristicSettings(show_whitespace_only_changes=True))
        assert heuristics.is_valid_cpp_case(document, 10, 10, "b a r").valid

    def test_last_line_duplicating_next_line(self, heuristics, document):
        result = heuristics.is_valid_cpp_case(document, 10, 10, "bar()\nvalue_11 = 11")
        assert not result.valid
        assert result.reason == InvalidReason.DUPLICATING_LINE

    def test_trailing_empty_lines_are_skipped_for_duplicate_check(self, heuristics, document):
        result = heuristics.is_valid_cpp_case(document, 10, 10, "bar()\nvalue_11 = 11\n\n")
        assert result.reason == InvalidReason.DUPLICATING_LINE

    def test_closing_bracket_is_not_a_duplicate(self, heuristics):
        lines = make_lines()
        lines[10] = "}"
        document = make_document(lines)

        result = heuristics.is_valid_cpp_case(document, 10, 10, "bar() {\n}")
        assert result.valid

    def test_repeated_existing_lines(self, heuristics, document):
        proposed = "value_8 = 8\n  value_9 = 9\nbar\nvalue_11 = 11"
        result = heuristics.is_valid_cpp_case(document, 8, 9, proposed)
        assert not result.valid
        assert result.reason == InvalidReason.REPEATED_CONTENT

    def test_extension_with_new_content_is_valid(self, heuristics, document):
        proposed = "value_8 = 8\nvalue_9 = 9\nnew_line()"
        assert heuristics.is_valid_cpp_case(document, 8, 9, proposed).valid

    def test_large_files_skip_validation(self, document):
        heuristics = ValidationHeuristics(HeuristicSettings(max_file_size=10))
        assert heuristics.is_valid_cpp_case(document, 10, 10, "bar").valid

    def test_disabled_heuristic_is_skipped(self, document):
        heuristics = ValidationHeuristics(HeuristicSettings(enabled_heuristics=[]))
        assert heuristics.is_valid_cpp_case(document, 10, 10, "bar").valid

    def test_update_settings(self, heuristics, document):
        heuristics.update_settings(
            HeuristicSettings(enabled_heuristics=[HeuristicType.WHITESPACE_ONLY])
        )
        assert not heuristics.is_enabled(HeuristicType.NO_OP)
        assert heuristics.is_valid_cpp_case(document, 10, 10, "bar").valid


class TestPredictionSuppressor:
    """Tests for cursor jump suppression."""

    def test_far_target_is_allowed(self, clock):
        suppressor = PredictionSuppressor(clock=clock)
        assert not suppressor.should_suppress("src/app.py", 40, cursor_line=9).suppress

    def test_target_near_cursor_is_suppressed(self, clock):
        suppressor = PredictionSuppressor(clock=clock)
        result = suppressor.should_suppress("src/app.py", 12, cursor_line=9)
        assert result.suppress
        assert result.reason == "too close to cursor"

    def test_consecutive_prediction_is_suppressed(self, clock):
        suppressor = PredictionSuppressor(clock=clock)
        suppressor.mark_cursor_move_as_prediction()
        assert suppressor.should_suppress("src/app.py", 40, cursor_line=9).suppress

        suppressor.clear_prediction_move()
        assert not suppressor.should_suppress("src/app.py", 40, cursor_line=9).suppress

    def test_target_near_recent_acceptance_is_suppressed(self, clock):
        suppressor = PredictionSuppressor(clock=clock)
        suppressor.record_accepted(DOC_URI, 30)

        result = suppressor.should_suppress("src/app.py", 32, cursor_line=0)
        assert result.suppress
        assert result.reason == "too close to recently accepted suggestion"

    def test_acceptance_expires(self, clock):
        suppressor = PredictionSuppressor(clock=clock)
        suppressor.record_accepted(DOC_URI, 30)
        clock.advance(31)

        assert not suppressor.should_suppress("src/app.py", 32, cursor_line=0).suppress

    def test_acceptance_in_other_file_does_not_suppress(self, clock):
        suppressor = PredictionSuppressor(clock=clock)
        suppressor.record_accepted("file:///ws/src/other.py", 30)

        assert not suppressor.should_suppress("src/app.py", 32, cursor_line=0).suppress

    def test_reset(self, clock):
        suppressor = PredictionSuppressor(clock=clock)
        suppressor.record_accepted(DOC_URI, 30)
        suppressor.mark_cursor_move_as_prediction()
        suppressor.reset()

        assert not suppressor.last_move_was_prediction
        assert not suppressor.should_suppress("src/app.py", 32, cursor_line=0).suppress
