from flask import Flask, request, jsonify
from flask_cors import CORS
from fee_engine import InvariantViolation, calculate_from_dict
import os
import logging

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for all routes
CORS(app)


@app.route("/api", methods=["GET"])
def api_info():
    """API information endpoint"""
    return jsonify({
        "status": "ok",
        "message": "Canonical Fee Engine API",
        "version": "1.0",
        "endpoints": {
            "calculate": "/calculate [POST]",
            "health": "/health [GET]"
        }
    }), 200


@app.route("/health", methods=["GET"])
def health():
    """Health check for monitoring"""
    return jsonify({"status": "healthy"}), 200


@app.route("/calculate", methods=["POST"])
def calculate():
    """
    Run a fee calculation over the contributions and rule data in the payload
    """
    try:
        # Get input data
        input_data = request.get_json(force=True, silent=True)

        if not input_data:
            return jsonify({
                "error": "No input data provided",
                "status": "failed"
            }), 400

        # Log request
        run_id = input_data.get("run_id", "Unknown") if isinstance(input_data, dict) else "Unknown"
        logger.info(f"Calculating run: {run_id}")

        # Process through engine
        result = calculate_from_dict(input_data)

        logger.info(f"Run calculated: {run_id} ({result['run_summary']['state']})")

        return jsonify(result), 200

    except (ValueError, KeyError, TypeError) as e:
        # Validation errors from engine
        logger.error(f"Validation error: {str(e)}")
        return jsonify({
            "error": str(e),
            "status": "validation_failed"
        }), 400

    except InvariantViolation as e:
        logger.error(f"Invariant violation: {str(e)}", exc_info=True)
        return jsonify({
            "error": str(e),
            "status": "invariant_violation"
        }), 500

    except Exception as e:
        # Unexpected errors
        logger.error(f"Processing error: {str(e)}", exc_info=True)
        return jsonify({
            "error": "An unexpected error occurred during calculation",
            "status": "failed"
        }), 500


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=False)
