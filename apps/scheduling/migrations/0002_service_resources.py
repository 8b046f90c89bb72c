from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("scheduling", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="service",
            name="resources",
            field=models.ManyToManyField(
                blank=True,
                help_text="Resources assigned automatically when a booking names none.",
                related_name="services",
                to="scheduling.resource",
            ),
        ),
    ]
