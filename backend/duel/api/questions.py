from flask import Blueprint, jsonify, request, current_app

from duel.errors import ExhaustedPool, InvalidRequest, NotFound
from duel.services.match import get_runtime
from duel.services.practice import PracticeService

questions = Blueprint('questions', __name__)


def _service():
    return PracticeService(get_runtime().questions)


@questions.route('', methods=['GET'])
def get_question():
    """
    Starting question for solo practice.
    Query: difficulty=(easy|medium|hard), playerRating=<number>
    """
    try:
        result = _service().first_question(request.args.get('difficulty'), request.args.get('playerRating'))
    except InvalidRequest as exc:
        return jsonify({'error': exc.message}), 400
    except NotFound as exc:
        return jsonify({'error': exc.message}), 404
    except OSError as exc:
        current_app.logger.error(f"[practice] question bank unavailable: {exc}")
        return jsonify({'error': 'Server error'}), 500
    return jsonify(result)


@questions.route('/answer', methods=['POST'])
def submit_answer():
    """
    Scores a practice answer and returns the next question.
    Body: { questionId, givenAnswer, playerRating, currentScore }
    """
    data = request.get_json(silent=True) or {}
    try:
        result = _service().submit_answer(
            data.get('questionId'),
            data.get('givenAnswer'),
            data.get('playerRating'),
            data.get('currentScore'),
        )
    except InvalidRequest as exc:
        return jsonify({'error': exc.message}), 400
    except (NotFound, ExhaustedPool) as exc:
        return jsonify({'error': exc.message}), 404
    return jsonify(result)
