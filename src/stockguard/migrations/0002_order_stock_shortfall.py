from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("stockguard", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="order",
            name="stock_shortfall",
            field=models.BooleanField(default=False),
        ),
    ]
