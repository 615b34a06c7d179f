from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('rentals', '0001_initial'),
    ]

    operations = [
        migrations.RemoveConstraint(
            model_name='rentalorder',
            name='one_holding_order_per_vehicle',
        ),
        migrations.AddConstraint(
            model_name='rentalorder',
            constraint=models.UniqueConstraint(
                condition=models.Q(
                    ('is_deleted', False),
                    ('status__in', ['Draft', 'Confirmed', 'InProgress', 'Completed']),
                ),
                fields=('vehicle',),
                name='one_active_order_per_vehicle',
            ),
        ),
    ]
