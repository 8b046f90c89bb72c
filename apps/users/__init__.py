"""Users app package.

Defines the e-mail based user model with a booking role (customer,
organiser, administrator) and the thin authentication surface. Use
``apps.users.models.CustomUser`` as the AUTH_USER_MODEL throughout
the project.
"""
