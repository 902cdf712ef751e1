"""
                        Services Module

Business logic used by the job handlers and the API.
Provider-backed services have Mock (development) and Real (production)
implementations.

Services:
    - notifications: Twilio SMS/WhatsApp and SendGrid email
    - inventory: Recipe-driven stock deduction and periodic scans
    - reports: CSV/Excel stock reports
    - maintenance: Reservation reminders and queue cleanup
"""
