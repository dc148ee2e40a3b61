#!/usr/bin/env python3
"""
Main entry point for running the CoachCal API
"""

from coachcal.main import create_app
import os

if __name__ == '__main__':
    config_name = os.environ.get('COACHCAL_ENV', 'development')

    app = create_app(config_name)

    print("Starting CoachCal...")
    print("Access the API at: http://localhost:5000/api")
    print("\nPress CTRL+C to stop the server")

    app.run(
        host='0.0.0.0',
        port=int(os.environ.get('PORT', '5000')),
        debug=app.config.get('DEBUG', False)
    )
